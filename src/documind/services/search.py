from __future__ import annotations

from time import perf_counter
from typing import List

from ..models.common import RetrievedChunk
from ..storage.gateway import VectorStoreGateway
from ..telemetry.logger import AuditLogger, MetricsRecorder


class RetrievalService:
    """Top-k similarity search over a single user's collection."""

    def __init__(
        self,
        *,
        gateway: VectorStoreGateway,
        metrics: MetricsRecorder,
        audit_logger: AuditLogger,
        default_k: int = 2,
    ) -> None:
        self._gateway = gateway
        self._metrics = metrics
        self._audit_logger = audit_logger
        self._default_k = default_k

    def retrieve(self, user_id: str, query: str, *, k: int | None = None) -> List[RetrievedChunk]:
        limit = self._default_k if k is None else k
        if not query or not query.strip():
            return []
        start = perf_counter()
        results = self._gateway.retrieve(user_id, query, limit)
        duration_ms = (perf_counter() - start) * 1000.0
        self._metrics.record_retrieval(len(results), latency_ms=duration_ms)
        self._audit_logger.retrieval_executed(user_id=user_id, query=query, result_count=len(results))
        return results


__all__ = ["RetrievalService"]
