from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from time import perf_counter
from typing import Any, Dict, Mapping

from ..errors import DuplicateJobError, JobPayloadError
from ..models.common import IngestionJob, IngestionSummary
from ..telemetry.logger import AuditLogger, MetricsRecorder
from .claims import InMemoryJobClaimRegistry, JobClaimRegistry
from .ingestion import IngestionPipeline
from .progress import ProgressReporter

logger = logging.getLogger(__name__)


class JobOutcome(str, Enum):
    COMPLETED = "completed"
    DUPLICATE = "duplicate"


@dataclass(slots=True)
class IngestionJobResult:
    job_id: str
    user_id: str
    status: JobOutcome
    summary: IngestionSummary | None = None

    @property
    def degraded(self) -> bool:
        return bool(self.summary and self.summary.degraded)

    def as_dict(self) -> Dict[str, object]:
        return {
            "jobId": self.job_id,
            "userId": self.user_id,
            "status": self.status.value,
            "summary": self.summary.as_details() if self.summary else None,
        }


class IngestionJobProcessor:
    """Processes one queued job end to end and maps failures to terminal states.

    A job is claimed before anything else so a redelivered payload never runs
    twice concurrently. Fatal errors emit a single ``error`` event, release the
    claim and propagate so the queue can apply its retry policy.
    """

    def __init__(
        self,
        *,
        pipeline: IngestionPipeline,
        progress: ProgressReporter,
        claims: JobClaimRegistry | None = None,
        metrics: MetricsRecorder | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._progress = progress
        self._claims = claims or InMemoryJobClaimRegistry()
        self._metrics = metrics or MetricsRecorder()
        self._audit = audit_logger or AuditLogger()

    def process(self, job_or_payload: IngestionJob | str | bytes | Mapping[str, Any]) -> IngestionJobResult:
        job = self._parse(job_or_payload)
        job_progress = self._progress.for_job(job)
        try:
            self._claims.claim(job.job_id)
        except DuplicateJobError:
            logger.info("ingestion.duplicate_job", extra={"job_id": job.job_id, "user_id": job.user_id})
            self._metrics.record_job("duplicate")
            return IngestionJobResult(job_id=job.job_id, user_id=job.user_id, status=JobOutcome.DUPLICATE)
        except Exception as exc:
            logger.error(
                "ingestion.claim_failed",
                extra={"job_id": job.job_id, "user_id": job.user_id, "error": str(exc)},
                exc_info=True,
            )
            job_progress.failed(f"Processing failed: {exc}", {"errorType": type(exc).__name__})
            self._metrics.record_job("failed")
            self._audit.ingest_failed(user_id=job.user_id, job_id=job.job_id, error=str(exc))
            raise

        started = perf_counter()
        logger.info(
            "ingestion.job_started",
            extra={"job_id": job.job_id, "user_id": job.user_id, "document_name": job.filename},
        )
        try:
            summary = self._pipeline.run(job, job_progress)
        except Exception as exc:
            latency_ms = (perf_counter() - started) * 1000.0
            logger.error(
                "ingestion.job_failed",
                extra={"job_id": job.job_id, "user_id": job.user_id, "error": str(exc)},
                exc_info=True,
            )
            job_progress.failed(f"Processing failed: {exc}", {"errorType": type(exc).__name__})
            self._claims.release(job.job_id)
            self._metrics.record_job("failed", latency_ms=latency_ms)
            self._audit.ingest_failed(user_id=job.user_id, job_id=job.job_id, error=str(exc))
            raise

        try:
            self._claims.complete(job.job_id)
        except Exception as exc:
            # Records are stored; the running claim expires after its TTL.
            logger.warning(
                "ingestion.claim_complete_failed",
                extra={"job_id": job.job_id, "user_id": job.user_id, "error": str(exc)},
            )
        latency_ms = (perf_counter() - started) * 1000.0
        message = f"Successfully processed {summary.processed} chunks"
        if summary.skipped:
            message += f" ({summary.skipped} skipped)"
        job_progress.completed(message, summary.as_details())
        self._metrics.record_job("degraded" if summary.degraded else "completed", latency_ms=latency_ms)
        self._audit.ingest_completed(
            user_id=job.user_id,
            job_id=job.job_id,
            filename=job.filename,
            processed=summary.processed,
            skipped=summary.skipped,
            collection=summary.collection,
        )
        return IngestionJobResult(
            job_id=job.job_id,
            user_id=job.user_id,
            status=JobOutcome.COMPLETED,
            summary=summary,
        )

    def _parse(self, job_or_payload: IngestionJob | str | bytes | Mapping[str, Any]) -> IngestionJob:
        if isinstance(job_or_payload, IngestionJob):
            return job_or_payload
        try:
            return IngestionJob.from_payload(job_or_payload)
        except JobPayloadError as exc:
            logger.error("ingestion.payload_rejected", extra={"error": str(exc)})
            self._metrics.record_job("rejected")
            if isinstance(job_or_payload, Mapping):
                self._report_rejection(job_or_payload, exc)
            raise

    def _report_rejection(self, payload: Mapping[str, Any], exc: JobPayloadError) -> None:
        user_id = payload.get("userId") or payload.get("user_id")
        job_id = payload.get("jobId") or payload.get("job_id")
        if not user_id or not job_id:
            return
        self._progress.emit(str(user_id), str(job_id), 0, "error", f"Processing failed: {exc}")


__all__ = ["IngestionJobProcessor", "IngestionJobResult", "JobOutcome"]
