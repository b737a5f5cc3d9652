from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Dict, Mapping

from ..runtime import Runtime, build_runtime

logger = logging.getLogger(__name__)

_RUNTIME: Runtime | None = None
_RUNTIME_LOCK = Lock()


def install_runtime(runtime: Runtime | None) -> None:
    """Use ``runtime`` for every subsequent task in this process (None resets)."""
    global _RUNTIME
    with _RUNTIME_LOCK:
        _RUNTIME = runtime


def process_ingestion_job(payload: str | bytes | Mapping[str, Any]) -> Dict[str, object]:
    """Worker entry point for processing a single uploaded document.

    Fatal errors propagate so RQ records the job as failed and applies the
    retry policy attached at enqueue time.
    """
    result = _get_runtime().processor.process(payload)
    return result.as_dict()


def _get_runtime() -> Runtime:
    global _RUNTIME
    with _RUNTIME_LOCK:
        if _RUNTIME is None:
            logger.info("worker.runtime_initialising")
            _RUNTIME = build_runtime()
        return _RUNTIME


__all__ = ["install_runtime", "process_ingestion_job"]
