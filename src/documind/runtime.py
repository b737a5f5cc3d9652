from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, List

from .acquisition.service import AcquisitionService, HttpURLFetcher, URLFetcher
from .chunking.engine import ChunkBuilder
from .config.settings import AppSettings, get_settings
from .embeddings.base import EmbeddingProvider
from .embeddings.client import EmbeddingClient
from .embeddings.hash import HashEmbeddingProvider
from .parsers.pdf import PDFTextExtractor
from .services.claims import InMemoryJobClaimRegistry, JobClaimRegistry, RedisJobClaimRegistry
from .services.generation import AnswerService
from .services.ingestion import IngestionPipeline
from .services.ingestion_jobs import IngestionJobProcessor
from .services.progress import (
    InMemoryProgressRecorder,
    LoggingProgressSink,
    NullProgressSink,
    ProgressReporter,
    ProgressSink,
    RedisProgressSink,
)
from .services.search import RetrievalService
from .storage.gateway import VectorStoreGateway
from .storage.vector_store import InMemoryVectorStore, QdrantVectorStore, VectorStoreClient
from .telemetry.logger import AuditLogger, MetricsRecorder

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    """Every long-lived client a worker or CLI needs, built once from settings."""

    settings: AppSettings
    metrics: MetricsRecorder
    audit_logger: AuditLogger
    embeddings: EmbeddingClient
    vector_store: VectorStoreClient
    gateway: VectorStoreGateway
    progress: ProgressReporter
    claims: JobClaimRegistry
    pipeline: IngestionPipeline
    processor: IngestionJobProcessor
    retrieval: RetrievalService
    answers: AnswerService | None = None
    _closers: List[Callable[[], None]] = field(default_factory=list)

    def close(self) -> None:
        while self._closers:
            closer = self._closers.pop()
            try:
                closer()
            except Exception as exc:
                LOGGER.warning("runtime.close_failed", extra={"error": str(exc)})


def build_runtime(
    settings: AppSettings | None = None,
    *,
    vector_store: VectorStoreClient | None = None,
    embedding_provider: EmbeddingProvider | None = None,
    progress_sink: ProgressSink | None = None,
    claims: JobClaimRegistry | None = None,
    url_fetcher: URLFetcher | None = None,
    chat_client: object | None = None,
) -> Runtime:
    """Construct the full object graph; explicit arguments replace the configured backend."""
    settings = settings or get_settings()
    closers: List[Callable[[], None]] = []
    redis_clients: dict = {}

    def redis_for(url: str):
        if url not in redis_clients:
            import redis

            client = redis.Redis.from_url(url)
            redis_clients[url] = client
            closers.append(client.close)
        return redis_clients[url]

    metrics = MetricsRecorder(
        namespace=settings.telemetry_namespace,
        enable_prometheus=settings.enable_metrics,
        exporter_port=settings.metrics_exporter_port,
        exporter_address=settings.metrics_exporter_address,
    )
    audit_logger = AuditLogger()

    provider = embedding_provider or _build_embedding_provider(settings)
    embeddings = EmbeddingClient(
        provider,
        dimension=settings.embeddings.dimension,
        max_retries=settings.embeddings.max_retries,
        retry_delay_base=settings.embeddings.retry_delay_base,
        canary_text=settings.embeddings.canary_text,
        metrics=metrics,
    )
    closers.append(embeddings.close)

    if vector_store is None:
        vector_store = _build_vector_store(settings)
        closers.append(vector_store.close)
    gateway = VectorStoreGateway(vector_store, embeddings, distance=settings.storage.distance)

    if progress_sink is None:
        progress_sink = _build_progress_sink(settings, redis_for)
    progress = ProgressReporter(progress_sink)

    if claims is None:
        claims = _build_claims(settings, redis_for)

    pipeline_settings = settings.pipeline
    pipeline = IngestionPipeline(
        acquisition=AcquisitionService(
            url_fetcher or HttpURLFetcher(timeout=pipeline_settings.source_timeout),
            max_bytes=pipeline_settings.max_source_bytes,
        ),
        extractor=PDFTextExtractor(y_tolerance=pipeline_settings.line_tolerance),
        chunk_builder=ChunkBuilder(
            min_chars=pipeline_settings.min_chunk_chars,
            max_chars=pipeline_settings.max_chunk_chars,
        ),
        embeddings=embeddings,
        gateway=gateway,
        batch_size=pipeline_settings.batch_size,
        progress_start=pipeline_settings.embed_progress_start,
        progress_end=pipeline_settings.embed_progress_end,
        metrics=metrics,
    )
    processor = IngestionJobProcessor(
        pipeline=pipeline,
        progress=progress,
        claims=claims,
        metrics=metrics,
        audit_logger=audit_logger,
    )
    retrieval = RetrievalService(
        gateway=gateway,
        metrics=metrics,
        audit_logger=audit_logger,
        default_k=settings.retrieval.default_k,
    )
    answers = None
    if settings.generation.enabled:
        if chat_client is None:
            chat_client = _build_chat_client(settings)
            if chat_client is not None:
                closers.append(chat_client.close)
        if chat_client is not None:
            answers = AnswerService(
                retrieval=retrieval,
                chat_client=chat_client,
                model=settings.generation.model,
                temperature=settings.generation.temperature,
            )
    return Runtime(
        settings=settings,
        metrics=metrics,
        audit_logger=audit_logger,
        embeddings=embeddings,
        vector_store=vector_store,
        gateway=gateway,
        progress=progress,
        claims=claims,
        pipeline=pipeline,
        processor=processor,
        retrieval=retrieval,
        answers=answers,
        _closers=closers,
    )


@contextmanager
def worker_runtime(settings: AppSettings | None = None, **overrides) -> Iterator[Runtime]:
    runtime = build_runtime(settings, **overrides)
    try:
        yield runtime
    finally:
        runtime.close()


def _build_embedding_provider(settings: AppSettings) -> EmbeddingProvider:
    embeddings_settings = settings.embeddings
    provider = (embeddings_settings.provider or "openai").lower()
    if provider == "hash":
        return HashEmbeddingProvider(dimension=embeddings_settings.dimension)
    if provider != "openai":
        raise RuntimeError(f"Unknown embedding provider '{embeddings_settings.provider}'")
    from .embeddings.openai import OpenAIEmbeddingProvider

    api_key = embeddings_settings.api_key or os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise RuntimeError(
            "OpenAI embeddings requested but no API key configured. "
            "Set DOCUMIND_EMBEDDINGS__API_KEY or use DOCUMIND_EMBEDDINGS__PROVIDER=hash."
        )
    return OpenAIEmbeddingProvider(
        api_key=api_key,
        model=embeddings_settings.model or "text-embedding-3-small",
        dimension=embeddings_settings.dimension,
        base_url=embeddings_settings.base_url,
    )


def _build_vector_store(settings: AppSettings) -> VectorStoreClient:
    backend = settings.storage.vector_backend.lower()
    if backend == "memory":
        if settings.environment.lower() != "dev":
            LOGGER.warning(
                "vector_store.in_memory",
                extra={"detail": "Vectors are kept in process memory and lost on restart."},
            )
        return InMemoryVectorStore()
    if backend != "qdrant":
        raise RuntimeError(f"Unknown vector backend '{settings.storage.vector_backend}'")
    from qdrant_client import QdrantClient

    qdrant_settings = settings.storage.qdrant
    if qdrant_settings.url:
        client = QdrantClient(
            url=qdrant_settings.url,
            api_key=qdrant_settings.api_key,
            prefer_grpc=qdrant_settings.prefer_grpc,
            timeout=qdrant_settings.timeout,
        )
    else:
        client = QdrantClient(
            host=qdrant_settings.host,
            port=qdrant_settings.port,
            grpc_port=qdrant_settings.grpc_port or 6334,
            api_key=qdrant_settings.api_key,
            prefer_grpc=qdrant_settings.prefer_grpc,
            timeout=qdrant_settings.timeout,
        )
    return QdrantVectorStore(client, metadata_fields={"environment": settings.environment})


def _build_progress_sink(settings: AppSettings, redis_for) -> ProgressSink:
    backend = settings.progress.backend.lower()
    if backend == "redis":
        return RedisProgressSink(redis_for(settings.progress.redis_url), channel_prefix=settings.progress.channel_prefix)
    if backend == "memory":
        return InMemoryProgressRecorder()
    if backend == "none":
        return NullProgressSink()
    return LoggingProgressSink()


def _build_claims(settings: AppSettings, redis_for) -> JobClaimRegistry:
    queue_settings = settings.queue
    if queue_settings.claim_backend.lower() == "redis":
        return RedisJobClaimRegistry(
            redis_for(queue_settings.redis_url),
            key_prefix=settings.telemetry_namespace,
            ttl_seconds=queue_settings.claim_ttl_seconds,
            completed_ttl_seconds=queue_settings.completed_ttl_seconds,
        )
    return InMemoryJobClaimRegistry(
        ttl_seconds=queue_settings.claim_ttl_seconds,
        completed_ttl_seconds=queue_settings.completed_ttl_seconds,
    )


def _build_chat_client(settings: AppSettings):
    api_key = settings.generation.api_key or os.getenv("OPENAI_API_KEY")
    if not api_key:
        LOGGER.info("generation.disabled", extra={"reason": "no API key configured"})
        return None
    from openai import OpenAI

    return OpenAI(api_key=api_key, base_url=settings.generation.base_url)


__all__ = ["Runtime", "build_runtime", "worker_runtime"]
