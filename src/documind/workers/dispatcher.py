from __future__ import annotations

from typing import Sequence

from ..models.common import IngestionJob

try:  # pragma: no cover - optional dependency import guards
    import redis  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - optional dependency import guards
    redis = None  # type: ignore

try:  # pragma: no cover - optional dependency import guards
    from rq import Queue, Retry  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - optional dependency import guards
    Queue = None  # type: ignore
    Retry = None  # type: ignore

TASK_PATH = "documind.workers.tasks.process_ingestion_job"


class RQIngestionDispatcher:
    """Publish ingestion jobs to the durable RQ queue consumed by the workers."""

    def __init__(
        self,
        *,
        redis_url: str | None = None,
        queue_name: str = "file-upload-queue",
        default_timeout: int = 900,
        max_retries: int = 3,
        retry_intervals: Sequence[int] | None = None,
        max_queue_length: int | None = None,
        queue: object | None = None,
    ) -> None:
        if Retry is None:
            raise ModuleNotFoundError("rq")
        if queue is None:
            if redis is None:
                raise ModuleNotFoundError("redis")
            if not redis_url:
                raise ValueError("redis_url is required when no queue is supplied")
            queue = Queue(queue_name, connection=redis.Redis.from_url(redis_url), default_timeout=default_timeout)
        self._queue = queue
        self._max_retries = max_retries
        self._retry_intervals = tuple(retry_intervals or ())
        self._max_queue_length = max_queue_length if max_queue_length and max_queue_length > 0 else None

    def can_accept(self, count: int = 1) -> bool:
        if self._max_queue_length is None:
            return True
        try:
            queued = int(self._queue.count)
        except Exception:
            return True
        return queued + max(count, 0) <= self._max_queue_length

    def enqueue(self, job: IngestionJob) -> str:
        """Queue ``job``; the job id doubles as the RQ job id so resubmits collapse."""
        if not self.can_accept(1):
            raise RuntimeError("ingestion queue backpressure: too many queued uploads")
        retry = None
        if self._max_retries > 0:
            retry = Retry(max=self._max_retries, interval=list(self._retry_intervals) or 0)
        self._queue.enqueue(
            TASK_PATH,
            kwargs={"payload": job.to_payload()},
            job_id=job.job_id,
            retry=retry,
            meta={"user_id": job.user_id, "filename": job.filename},
        )
        return job.job_id


__all__ = ["RQIngestionDispatcher", "TASK_PATH"]
