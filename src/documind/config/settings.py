from __future__ import annotations

import json
import os
from functools import lru_cache
from typing import List

from pydantic import BaseModel, Field


class QdrantSettings(BaseModel):
    url: str | None = Field(default=None, description="Full Qdrant URL; overrides host/port when set")
    host: str = "localhost"
    port: int = 6333
    grpc_port: int | None = None
    api_key: str | None = None
    prefer_grpc: bool = False
    timeout: float = Field(default=60.0, description="Request timeout (seconds) for Qdrant calls")


class StorageSettings(BaseModel):
    vector_backend: str = Field(default="memory", description="Vector store backend (memory or qdrant)")
    distance: str = Field(default="cosine", description="Similarity metric for new collections")
    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)


class EmbeddingsSettings(BaseModel):
    provider: str = Field(default="openai", description="Embedding provider identifier (hash or openai)")
    model: str | None = Field(default="text-embedding-3-small", description="Model identifier for the provider")
    api_key: str | None = Field(default=None, description="API key for hosted embedding providers")
    base_url: str | None = Field(default=None, description="Override base URL for OpenAI-compatible endpoints")
    dimension: int = Field(default=768, description="Expected embedding dimension")
    max_retries: int = Field(default=2, description="Retries per embedding call on transient errors")
    retry_delay_base: float = Field(default=0.5, description="Base delay (seconds) for exponential backoff")
    canary_text: str = Field(
        default="This is a test document to verify the embedding API is working correctly.",
        description="Sample text embedded once per job before any document",
    )


class PipelineSettings(BaseModel):
    batch_size: int = Field(default=50, description="Chunks per embedding batch")
    min_chunk_chars: int = Field(default=10, description="Chunks at or below this length are dropped")
    max_chunk_chars: int = Field(default=2048, description="Normalized chunk length cap")
    line_tolerance: float = Field(default=2.0, description="Vertical distance (pt) grouping fragments into one line")
    embed_progress_start: int = Field(default=60, description="Progress at the start of the embedding phase")
    embed_progress_end: int = Field(default=90, description="Progress at the end of the embedding phase")
    source_timeout: float = Field(default=60.0, description="Timeout (seconds) for downloading remote sources")
    max_source_bytes: int = Field(default=10 * 1024 * 1024, description="Largest accepted upload")


class ProgressSettings(BaseModel):
    backend: str = Field(default="log", description="Progress sink (redis, log, memory, or none)")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL for progress pub/sub")
    channel_prefix: str = Field(default="documind:progress", description="Pub/sub channel prefix")


class QueueSettings(BaseModel):
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL backing the job queue")
    queue_name: str = Field(default="file-upload-queue", description="RQ queue name for ingestion jobs")
    default_timeout: int = Field(default=900, description="Default timeout (seconds) for ingestion jobs")
    max_retries: int = Field(default=3, description="Maximum retry attempts for failed jobs")
    retry_intervals: List[int] = Field(default_factory=lambda: [15, 30, 60, 120])
    claim_backend: str = Field(default="redis", description="Job claim registry (redis or memory)")
    claim_ttl_seconds: int = Field(default=3600, description="Lifetime of an in-flight job claim")
    completed_ttl_seconds: int = Field(default=60 * 60 * 24, description="Lifetime of a completed-job marker")


class WorkerSettings(BaseModel):
    concurrency: int = Field(default=4, description="Maximum jobs processed concurrently")
    name_prefix: str = Field(default="documind-worker", description="Prefix for RQ worker names")


class RetrievalSettings(BaseModel):
    default_k: int = Field(default=2, description="Chunks returned per query when k is not given")


class GenerationSettings(BaseModel):
    enabled: bool = True
    model: str = Field(default="gpt-4o-mini", description="Chat model used to answer queries")
    api_key: str | None = None
    base_url: str | None = None
    temperature: float = 0.2


class AppSettings(BaseModel):
    environment: str = "dev"
    log_level: str = "INFO"
    storage: StorageSettings = Field(default_factory=StorageSettings)
    embeddings: EmbeddingsSettings = Field(default_factory=EmbeddingsSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    progress: ProgressSettings = Field(default_factory=ProgressSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    telemetry_namespace: str = "documind"
    enable_metrics: bool = False
    metrics_exporter_port: int | None = None
    metrics_exporter_address: str = "0.0.0.0"


_OVERRIDE: AppSettings | None = None


@lru_cache
def _load_settings() -> AppSettings:
    overrides = _load_env_overrides()
    if not overrides:
        return AppSettings()
    return AppSettings.model_validate(overrides)


def get_settings() -> AppSettings:
    """Return application settings, environment overrides applied."""
    if _OVERRIDE is not None:
        return _OVERRIDE
    return _load_settings()


def set_settings(settings: AppSettings) -> None:
    """Programmatically override application settings (tests, scripts)."""
    global _OVERRIDE
    _OVERRIDE = settings


def reset_settings() -> None:
    """Drop any injected settings and re-read the environment on next access."""
    global _OVERRIDE
    _OVERRIDE = None
    _load_settings.cache_clear()


def _load_env_overrides(prefix: str = "DOCUMIND_") -> dict:
    overrides: dict = {}
    for key, raw_value in os.environ.items():
        if not key.startswith(prefix):
            continue
        path = key[len(prefix) :].strip("_")
        if not path:
            continue
        segments = [segment.lower() for segment in path.split("__") if segment]
        if not segments:
            continue
        cursor = overrides
        for segment in segments[:-1]:
            cursor = cursor.setdefault(segment, {})
        cursor[segments[-1]] = _coerce_env_value(raw_value)
    return overrides


def _coerce_env_value(value: str):
    if value == "":
        return None
    lowered = value.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    if lowered in {"null", "none"}:
        return None
    if value.isdigit():
        return int(value)
    try:
        return float(value)
    except ValueError:
        pass
    if value.startswith("[") or value.startswith("{"):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


__all__ = [
    "AppSettings",
    "EmbeddingsSettings",
    "GenerationSettings",
    "PipelineSettings",
    "ProgressSettings",
    "QdrantSettings",
    "QueueSettings",
    "RetrievalSettings",
    "StorageSettings",
    "WorkerSettings",
    "get_settings",
    "set_settings",
    "reset_settings",
]
