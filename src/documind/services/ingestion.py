from __future__ import annotations

import logging
from typing import List, Sequence

from ..acquisition.service import AcquisitionService
from ..chunking.engine import ChunkBuilder, batch_chunks
from ..embeddings.client import EmbeddingClient
from ..errors import EmbeddingRejectedError, EmbeddingServiceError
from ..models.common import (
    ChunkOutcome,
    CleanedChunk,
    CollectionHandle,
    IngestionJob,
    IngestionSummary,
    VectorRecord,
)
from ..parsers.pdf import PDFTextExtractor
from ..storage.gateway import VectorStoreGateway
from ..telemetry.logger import MetricsRecorder
from . import progress as milestones
from .progress import JobProgress, embedding_progress

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Runs one job's steps in order: acquire, extract, chunk, embed, store.

    Every step before the embedding loop is fatal when it raises. Inside the
    loop each chunk is handled on its own: a rejected embedding or a failed
    append is recorded as a skip and the loop moves on.
    """

    def __init__(
        self,
        *,
        acquisition: AcquisitionService,
        extractor: PDFTextExtractor,
        chunk_builder: ChunkBuilder,
        embeddings: EmbeddingClient,
        gateway: VectorStoreGateway,
        batch_size: int = 50,
        progress_start: int = 60,
        progress_end: int = 90,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._acquisition = acquisition
        self._extractor = extractor
        self._chunk_builder = chunk_builder
        self._embeddings = embeddings
        self._gateway = gateway
        self._batch_size = batch_size
        self._progress_start = progress_start
        self._progress_end = progress_end
        self._metrics = metrics

    def run(self, job: IngestionJob, progress: JobProgress) -> IngestionSummary:
        progress.update(milestones.STARTED, f"Starting processing of {job.filename}")

        source = self._acquisition.acquire(job.source_location)
        progress.update(milestones.VALIDATED, "File validated, extracting text...")

        units = self._extractor.extract(source.content, filename=job.filename)
        chunks = self._chunk_builder.build(units)
        mode = units[0].source_metadata.extraction_mode if units else None
        summary = IngestionSummary(total_units=len(units), total_chunks=len(chunks), extraction_mode=mode)
        progress.update(
            milestones.EXTRACTED,
            f"Extracted text from {len(units)} pages",
            {"pages": len(units), "chunks": len(chunks), "extractionMode": mode},
        )

        self._embeddings.check_service()
        progress.update(milestones.EMBEDDINGS_READY, "Embedding service ready")

        handle = self._gateway.resolve_or_create_collection(job.user_id)
        summary.collection = handle.name
        summary.created_collection = handle.created
        progress.update(
            milestones.COLLECTION_READY,
            "Created new document collection" if handle.created else "Using existing document collection",
            {"collection": handle.name},
        )

        batches = list(batch_chunks(chunks, self._batch_size))
        summary.batches = len(batches)
        progress.update(
            milestones.CHUNKS_PREPARED,
            f"Prepared {len(chunks)} chunks in {len(batches)} batches",
            {"chunks": len(chunks), "batches": len(batches)},
        )

        self._embed_batches(job, handle, batches, summary, progress)

        progress.finalizing()
        if self._metrics:
            self._metrics.record_chunks(stored=summary.processed, skipped=summary.skipped)
        logger.info(
            "pipeline.completed",
            extra={
                "job_id": job.job_id,
                "user_id": job.user_id,
                "processed": summary.processed,
                "skipped": summary.skipped,
            },
        )
        return summary

    def _embed_batches(
        self,
        job: IngestionJob,
        handle: CollectionHandle,
        batches: Sequence[List[CleanedChunk]],
        summary: IngestionSummary,
        progress: JobProgress,
    ) -> None:
        total = summary.total_chunks
        done = 0
        for number, batch in enumerate(batches, start=1):
            progress.update(
                self._window(done, total),
                f"Processing batch {number}/{len(batches)}",
                {"batch": number, "batches": len(batches), "batchSize": len(batch)},
            )
            for chunk in batch:
                summary.record(self._store_chunk(job, handle, chunk))
                done += 1
                progress.update(
                    self._window(done, total),
                    f"Processed {done}/{total} chunks",
                    {"processed": summary.processed, "skipped": summary.skipped},
                )

    def _store_chunk(self, job: IngestionJob, handle: CollectionHandle, chunk: CleanedChunk) -> ChunkOutcome:
        try:
            vector = self._embeddings.embed(chunk.text)
        except EmbeddingRejectedError as exc:
            return self._skip(job, chunk, "embedding_rejected", exc)
        except EmbeddingServiceError as exc:
            return self._skip(job, chunk, "embedding_failed", exc)
        except Exception as exc:
            return self._skip(job, chunk, "embedding_error", exc)

        record = VectorRecord(chunk=chunk, vector=vector, user_id=job.user_id, job_id=job.job_id)
        if not self._gateway.append(handle, record):
            return ChunkOutcome.skipped(chunk.index, "append_failed")
        return ChunkOutcome.stored(chunk.index)

    def _skip(self, job: IngestionJob, chunk: CleanedChunk, reason: str, exc: Exception) -> ChunkOutcome:
        logger.warning(
            "pipeline.chunk_skipped",
            extra={
                "job_id": job.job_id,
                "chunk_index": chunk.index,
                "page_number": chunk.page_number,
                "reason": reason,
                "error": str(exc),
            },
            exc_info=True,
        )
        return ChunkOutcome.skipped(chunk.index, reason)

    def _window(self, done: int, total: int) -> int:
        return embedding_progress(done, total, start=self._progress_start, end=self._progress_end)


__all__ = ["IngestionPipeline"]
