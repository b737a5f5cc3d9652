from __future__ import annotations

import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping

from ..config.settings import AppSettings
from ..models.common import IngestionJob
from ..services.ingestion_jobs import IngestionJobProcessor, IngestionJobResult

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PoolOutcome:
    job_id: str | None
    result: IngestionJobResult | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class LocalWorkerPool:
    """In-process bounded pool; each job runs on its own thread and future.

    An exception raised by one job stays in that job's future, so other jobs in
    flight are unaffected.
    """

    def __init__(self, processor: IngestionJobProcessor, *, concurrency: int = 4) -> None:
        if concurrency <= 0:
            raise ValueError("concurrency must be positive")
        self._processor = processor
        self._executor = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="documind-job")

    def submit(self, job_or_payload: IngestionJob | str | bytes | Mapping[str, Any]) -> Future:
        return self._executor.submit(self._processor.process, job_or_payload)

    def run_all(self, jobs: Iterable[IngestionJob | str | bytes | Mapping[str, Any]]) -> List[PoolOutcome]:
        submitted = [(job, self.submit(job)) for job in jobs]
        outcomes: List[PoolOutcome] = []
        for job, future in submitted:
            job_id = _job_id_of(job)
            try:
                outcomes.append(PoolOutcome(job_id=job_id, result=future.result()))
            except Exception as exc:
                logger.warning("worker.job_failed", extra={"job_id": job_id, "error": str(exc)})
                outcomes.append(PoolOutcome(job_id=job_id, error=exc))
        return outcomes

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "LocalWorkerPool":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()


def run_rq_worker_pool(settings: AppSettings, *, burst: bool = False) -> None:
    """Start ``worker.concurrency`` RQ worker processes on the ingestion queue (blocking)."""
    import redis
    from rq.worker_pool import WorkerPool

    connection = redis.Redis.from_url(settings.queue.redis_url)
    connection.ping()
    pool = WorkerPool(
        [settings.queue.queue_name],
        connection=connection,
        num_workers=settings.worker.concurrency,
    )
    logger.info(
        "worker.pool_starting",
        extra={"queue": settings.queue.queue_name, "num_workers": settings.worker.concurrency},
    )
    pool.start(burst=burst)


def run_rq_worker(
    settings: AppSettings,
    *,
    burst: bool = False,
    connection: object | None = None,
    worker_class: type | None = None,
) -> None:
    """Run one RQ worker in this process (blocking).

    The worker also runs the RQ scheduler: jobs enqueued with retry intervals
    are parked in the scheduled registry after a failure and only come back
    to the queue through it.
    """
    if connection is None:
        import redis

        connection = redis.Redis.from_url(settings.queue.redis_url)
        connection.ping()
    if worker_class is None:
        from rq import Worker

        worker_class = Worker

    queue_name = settings.queue.queue_name
    worker = worker_class(
        [queue_name],
        connection=connection,
        name=f"{settings.worker.name_prefix}-{queue_name}-{os.getpid()}",
    )
    logger.info("worker.single_starting", extra={"queue": queue_name, "num_workers": 1})
    worker.work(burst=burst, with_scheduler=True)


def _job_id_of(job: object) -> str | None:
    if isinstance(job, IngestionJob):
        return job.job_id
    if isinstance(job, Mapping):
        value = job.get("jobId") or job.get("job_id")
        return str(value) if value else None
    return None


__all__ = ["LocalWorkerPool", "PoolOutcome", "run_rq_worker", "run_rq_worker_pool"]
