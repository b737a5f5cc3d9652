from __future__ import annotations

import logging
import time
from threading import RLock
from typing import Dict, Tuple

from ..errors import DuplicateJobError

logger = logging.getLogger(__name__)

_RUNNING = "running"
_COMPLETED = "completed"


class JobClaimRegistry:
    """Guarantees a job id is processed by exactly one worker at a time.

    A claim is taken before any work starts. Successful jobs keep a longer-lived
    ``completed`` marker so a redelivered payload is recognised as a duplicate;
    failed jobs release their claim so the queue's retry can pick them up.
    """

    def claim(self, job_id: str) -> None:
        raise NotImplementedError

    def complete(self, job_id: str) -> None:
        raise NotImplementedError

    def release(self, job_id: str) -> None:
        raise NotImplementedError


class InMemoryJobClaimRegistry(JobClaimRegistry):
    def __init__(self, *, ttl_seconds: int = 3600, completed_ttl_seconds: int = 86400) -> None:
        self._ttl = ttl_seconds
        self._completed_ttl = completed_ttl_seconds
        self._lock = RLock()
        self._claims: Dict[str, Tuple[str, float]] = {}

    def claim(self, job_id: str) -> None:
        now = time.monotonic()
        with self._lock:
            entry = self._claims.get(job_id)
            if entry is not None and entry[1] > now:
                raise DuplicateJobError(job_id)
            self._claims[job_id] = (_RUNNING, now + self._ttl)

    def complete(self, job_id: str) -> None:
        with self._lock:
            self._claims[job_id] = (_COMPLETED, time.monotonic() + self._completed_ttl)

    def release(self, job_id: str) -> None:
        with self._lock:
            self._claims.pop(job_id, None)

    def state(self, job_id: str) -> str | None:
        with self._lock:
            entry = self._claims.get(job_id)
        if entry is None or entry[1] <= time.monotonic():
            return None
        return entry[0]


class RedisJobClaimRegistry(JobClaimRegistry):
    """Claims stored as ``SET NX EX`` keys so they hold across worker processes."""

    def __init__(
        self,
        redis_client: object,
        *,
        key_prefix: str = "documind",
        ttl_seconds: int = 3600,
        completed_ttl_seconds: int = 86400,
    ) -> None:
        self._redis = redis_client
        self._prefix = f"{key_prefix.rstrip(':')}:job_claim"
        self._ttl = ttl_seconds
        self._completed_ttl = completed_ttl_seconds

    def claim(self, job_id: str) -> None:
        acquired = self._redis.set(self._key(job_id), _RUNNING, nx=True, ex=self._ttl)
        if not acquired:
            raise DuplicateJobError(job_id)

    def complete(self, job_id: str) -> None:
        try:
            self._redis.set(self._key(job_id), _COMPLETED, ex=self._completed_ttl)
        except Exception as exc:
            logger.warning("claims.complete_failed", extra={"job_id": job_id, "error": str(exc)})

    def release(self, job_id: str) -> None:
        try:
            self._redis.delete(self._key(job_id))
        except Exception as exc:
            # The claim expires on its own; a retry only waits for the TTL.
            logger.warning("claims.release_failed", extra={"job_id": job_id, "error": str(exc)})

    def _key(self, job_id: str) -> str:
        return f"{self._prefix}:{job_id}"


__all__ = ["JobClaimRegistry", "InMemoryJobClaimRegistry", "RedisJobClaimRegistry"]
