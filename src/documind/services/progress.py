from __future__ import annotations

import json
import logging
from collections import OrderedDict
from threading import RLock
from typing import Dict, List, Optional, Protocol

from ..models.common import IngestionJob, ProgressEvent, ProgressStatus

logger = logging.getLogger(__name__)

STARTED = 5
VALIDATED = 10
EXTRACTED = 25
EMBEDDINGS_READY = 35
COLLECTION_READY = 45
CHUNKS_PREPARED = 50
FINALIZING = 95
COMPLETE = 100
FAILED = 0


class ProgressSink(Protocol):
    def publish(self, event: ProgressEvent) -> None:
        ...


class NullProgressSink:
    def publish(self, event: ProgressEvent) -> None:
        return None


class LoggingProgressSink:
    """Writes each event to the application log."""

    def publish(self, event: ProgressEvent) -> None:
        logger.info(
            "progress.event",
            extra={
                "user_id": event.user_id,
                "job_id": event.job_id,
                "progress": event.progress,
                "status": event.status.value,
                "detail": event.message,
            },
        )


class InMemoryProgressRecorder:
    """Keeps every published event; used by tests and the inline CLI."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._events: List[ProgressEvent] = []

    def publish(self, event: ProgressEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> List[ProgressEvent]:
        with self._lock:
            return list(self._events)

    def for_job(self, job_id: str) -> List[ProgressEvent]:
        return [event for event in self.events if event.job_id == job_id]


class RedisProgressSink:
    """Publishes events as JSON on a per-user Redis pub/sub channel.

    Only the owning user's channel (``{prefix}:user_{userId}``) receives an
    event; the notification layer subscribes each connected session to it.
    """

    def __init__(self, redis_client: object, *, channel_prefix: str = "documind:progress") -> None:
        self._redis = redis_client
        self._prefix = channel_prefix.rstrip(":")

    def channel_for(self, user_id: str) -> str:
        return f"{self._prefix}:user_{user_id}"

    def publish(self, event: ProgressEvent) -> None:
        self._redis.publish(self.channel_for(event.user_id), json.dumps(event.to_payload(), default=str))


class ProgressReporter:
    """Emits progress events while enforcing per-job ordering rules.

    Progress never goes backwards for a running job, and nothing is emitted for
    a job after its terminal (completed or error) event. Sink failures are
    logged and never reach the caller.
    """

    def __init__(self, sink: ProgressSink | None = None, *, max_tracked_terminal: int = 10000) -> None:
        self._sink = sink or NullProgressSink()
        self._lock = RLock()
        self._high_water: Dict[str, int] = {}
        self._terminal: "OrderedDict[str, ProgressStatus]" = OrderedDict()
        self._max_tracked_terminal = max_tracked_terminal

    def emit(
        self,
        user_id: str,
        job_id: str,
        progress: int,
        status: ProgressStatus | str,
        message: str,
        details: Optional[Dict[str, object]] = None,
    ) -> ProgressEvent | None:
        status = ProgressStatus(status)
        value = max(0, min(100, int(progress)))
        with self._lock:
            if job_id in self._terminal:
                logger.debug(
                    "progress.dropped_after_terminal",
                    extra={"job_id": job_id, "status": status.value, "terminal": self._terminal[job_id].value},
                )
                return None
            if status.is_terminal:
                self._high_water.pop(job_id, None)
                self._terminal[job_id] = status
                while len(self._terminal) > self._max_tracked_terminal:
                    self._terminal.popitem(last=False)
            else:
                value = max(value, self._high_water.get(job_id, 0))
                self._high_water[job_id] = value
        event = ProgressEvent(
            user_id=user_id,
            job_id=job_id,
            progress=value,
            status=status,
            message=message,
            details=details,
        )
        try:
            self._sink.publish(event)
        except Exception as exc:
            logger.warning(
                "progress.publish_failed",
                extra={"job_id": job_id, "progress": value, "error": str(exc)},
            )
        return event

    def is_terminal(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._terminal

    def for_job(self, job: IngestionJob) -> "JobProgress":
        return JobProgress(self, job)


class JobProgress:
    """Progress emitter bound to a single job."""

    def __init__(self, reporter: ProgressReporter, job: IngestionJob) -> None:
        self._reporter = reporter
        self.job = job

    def update(self, progress: int, message: str, details: Optional[Dict[str, object]] = None) -> ProgressEvent | None:
        return self._emit(progress, ProgressStatus.PROCESSING, message, details)

    def finalizing(self, message: str = "Finalizing document processing...") -> ProgressEvent | None:
        return self._emit(FINALIZING, ProgressStatus.FINALIZING, message, None)

    def completed(self, message: str, details: Optional[Dict[str, object]] = None) -> ProgressEvent | None:
        return self._emit(COMPLETE, ProgressStatus.COMPLETED, message, details)

    def failed(self, message: str, details: Optional[Dict[str, object]] = None) -> ProgressEvent | None:
        return self._emit(FAILED, ProgressStatus.ERROR, message, details)

    def _emit(
        self,
        progress: int,
        status: ProgressStatus,
        message: str,
        details: Optional[Dict[str, object]],
    ) -> ProgressEvent | None:
        return self._reporter.emit(self.job.user_id, self.job.job_id, progress, status, message, details)


def embedding_progress(done: int, total: int, *, start: int = 60, end: int = 90) -> int:
    """Map ``done`` of ``total`` chunks into the embedding progress window."""
    if total <= 0:
        return end
    fraction = min(max(done / total, 0.0), 1.0)
    return start + int(round((end - start) * fraction))


__all__ = [
    "ProgressSink",
    "NullProgressSink",
    "LoggingProgressSink",
    "InMemoryProgressRecorder",
    "RedisProgressSink",
    "ProgressReporter",
    "JobProgress",
    "embedding_progress",
    "STARTED",
    "VALIDATED",
    "EXTRACTED",
    "EMBEDDINGS_READY",
    "COLLECTION_READY",
    "CHUNKS_PREPARED",
    "FINALIZING",
    "COMPLETE",
    "FAILED",
]
