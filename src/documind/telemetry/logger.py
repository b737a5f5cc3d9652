from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from statistics import mean
from threading import Lock
from typing import Dict, Iterable, List

try:  # pragma: no cover - optional dependency
    from prometheus_client import Counter as PrometheusCounter
    from prometheus_client import Histogram as PrometheusHistogram
    from prometheus_client import start_http_server
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    PrometheusCounter = None
    PrometheusHistogram = None
    start_http_server = None

LOGGER = logging.getLogger("documind")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)


@dataclass(slots=True)
class _PrometheusHandles:
    jobs: object
    job_latency: object
    chunks: object
    retrievals: object
    retrieval_latency: object
    dependency_failures: object
    dependency_retries: object


@dataclass(slots=True)
class MetricsRecorder:
    """In-memory metrics recorder with optional Prometheus export."""

    namespace: str = "documind"
    enable_prometheus: bool = False
    exporter_port: int | None = None
    exporter_address: str = "0.0.0.0"
    jobs: Dict[str, int] = field(default_factory=dict)
    chunks_stored: int = 0
    chunks_skipped: int = 0
    retrieval_count: int = 0
    job_latency_ms: List[float] = field(default_factory=list)
    retrieval_latency_ms: List[float] = field(default_factory=list)
    dependency_failures: Dict[str, int] = field(default_factory=dict)
    dependency_retries: Dict[str, int] = field(default_factory=dict)
    _lock: Lock = field(init=False, default_factory=Lock)
    _prometheus: _PrometheusHandles | None = field(init=False, default=None)
    _exporter_started: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        if not self.enable_prometheus:
            return
        if PrometheusCounter is None or PrometheusHistogram is None:
            LOGGER.warning("prometheus.unavailable", extra={"namespace": self.namespace})
            return
        prefix = self.namespace.replace("-", "_")
        self._prometheus = _PrometheusHandles(
            jobs=PrometheusCounter(
                f"{prefix}_ingestion_jobs_total",
                "Ingestion jobs finished, by terminal status.",
                labelnames=("status",),
            ),
            job_latency=PrometheusHistogram(
                f"{prefix}_ingestion_job_latency_seconds",
                "End-to-end ingestion job latency.",
                buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
            ),
            chunks=PrometheusCounter(
                f"{prefix}_ingestion_chunks_total",
                "Chunks handled during ingestion, by outcome.",
                labelnames=("outcome",),
            ),
            retrievals=PrometheusCounter(
                f"{prefix}_retrieval_requests_total",
                "Retrieval requests processed.",
            ),
            retrieval_latency=PrometheusHistogram(
                f"{prefix}_retrieval_latency_seconds",
                "Retrieval latency distribution.",
                buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
            ),
            dependency_failures=PrometheusCounter(
                f"{prefix}_dependency_failures_total",
                "Dependency failures recorded.",
                labelnames=("dependency",),
            ),
            dependency_retries=PrometheusCounter(
                f"{prefix}_dependency_retries_total",
                "Dependency retry attempts recorded.",
                labelnames=("dependency",),
            ),
        )
        if self.exporter_port is not None and start_http_server is not None:
            try:
                start_http_server(self.exporter_port, addr=self.exporter_address)
            except OSError as exc:  # pragma: no cover - I/O errors are environment specific
                LOGGER.warning(
                    "prometheus.exporter_start_failed",
                    extra={"error": str(exc), "port": self.exporter_port},
                )
            else:
                self._exporter_started = True

    def record_job(self, status: str, *, latency_ms: float | None = None) -> None:
        LOGGER.info("ingestion.job", extra={"status": status, "latency_ms": latency_ms})
        with self._lock:
            self.jobs[status] = self.jobs.get(status, 0) + 1
            if latency_ms is not None:
                self.job_latency_ms.append(latency_ms)
        if self._prometheus:
            self._prometheus.jobs.labels(status=status).inc()
            if latency_ms is not None:
                self._prometheus.job_latency.observe(latency_ms / 1000.0)

    def record_chunks(self, *, stored: int, skipped: int) -> None:
        with self._lock:
            self.chunks_stored += stored
            self.chunks_skipped += skipped
        if self._prometheus:
            self._prometheus.chunks.labels(outcome="stored").inc(stored)
            self._prometheus.chunks.labels(outcome="skipped").inc(skipped)

    def record_retrieval(self, results_count: int, *, latency_ms: float | None = None) -> None:
        LOGGER.info("retrieval.completed", extra={"results_count": results_count, "latency_ms": latency_ms})
        with self._lock:
            self.retrieval_count += 1
            if latency_ms is not None:
                self.retrieval_latency_ms.append(latency_ms)
        if self._prometheus:
            self._prometheus.retrievals.inc()
            if latency_ms is not None:
                self._prometheus.retrieval_latency.observe(latency_ms / 1000.0)

    def record_dependency_failure(self, dependency: str) -> None:
        LOGGER.warning("dependency.failure", extra={"dependency": dependency})
        with self._lock:
            self.dependency_failures[dependency] = self.dependency_failures.get(dependency, 0) + 1
        if self._prometheus:
            self._prometheus.dependency_failures.labels(dependency=dependency).inc()

    def record_dependency_retry(self, dependency: str) -> None:
        LOGGER.info("dependency.retry", extra={"dependency": dependency})
        with self._lock:
            self.dependency_retries[dependency] = self.dependency_retries.get(dependency, 0) + 1
        if self._prometheus:
            self._prometheus.dependency_retries.labels(dependency=dependency).inc()

    @property
    def exporter_running(self) -> bool:
        return self._exporter_started

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {
                "jobs": dict(self.jobs),
                "chunks": {"stored": self.chunks_stored, "skipped": self.chunks_skipped},
                "job_latency_ms": self._latency_summary(self.job_latency_ms),
                "retrieval": {
                    "requests": self.retrieval_count,
                    "latency_ms": self._latency_summary(self.retrieval_latency_ms),
                },
                "dependencies": {
                    "failures": dict(self.dependency_failures),
                    "retries": dict(self.dependency_retries),
                },
                "exporter": {
                    "enabled": bool(self._prometheus),
                    "running": self._exporter_started,
                },
            }

    def _latency_summary(self, values: Iterable[float]) -> Dict[str, float | int]:
        data = sorted(values)
        if not data:
            return {"count": 0, "avg": 0.0, "p50": 0.0, "p95": 0.0, "max": 0.0}
        return {
            "count": len(data),
            "avg": float(mean(data)),
            "p50": float(self._percentile(data, 0.5)),
            "p95": float(self._percentile(data, 0.95)),
            "max": float(data[-1]),
        }

    @staticmethod
    def _percentile(data: List[float], percentile: float) -> float:
        if percentile <= 0:
            return float(data[0])
        if percentile >= 1:
            return float(data[-1])
        index = percentile * (len(data) - 1)
        lower = int(index)
        upper = min(lower + 1, len(data) - 1)
        weight = index - lower
        return float(data[lower] * (1 - weight) + data[upper] * weight)


class AuditLogger:
    """Structured audit logger writing to application logs."""

    def ingest_completed(
        self,
        *,
        user_id: str,
        job_id: str,
        filename: str,
        processed: int,
        skipped: int,
        collection: str | None,
    ) -> None:
        LOGGER.info(
            "audit.ingest_completed",
            extra={
                "user_id": user_id,
                "job_id": job_id,
                "document_name": filename,
                "processed": processed,
                "skipped": skipped,
                "collection": collection,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    def ingest_failed(self, *, user_id: str, job_id: str, error: str) -> None:
        LOGGER.info(
            "audit.ingest_failed",
            extra={
                "user_id": user_id,
                "job_id": job_id,
                "error": error,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    def retrieval_executed(self, *, user_id: str, query: str, result_count: int) -> None:
        LOGGER.info(
            "audit.retrieval_executed",
            extra={
                "user_id": user_id,
                "query_hash": hash(query),
                "result_count": result_count,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )


__all__ = ["AuditLogger", "MetricsRecorder", "configure_logging", "LOG_FORMAT"]
