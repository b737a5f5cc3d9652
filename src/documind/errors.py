from __future__ import annotations


class DocumindError(Exception):
    """Base class for ingestion and retrieval failures."""


class JobPayloadError(DocumindError, ValueError):
    """Queue payload is malformed or missing required fields."""


class DuplicateJobError(DocumindError):
    """Another worker already owns (or finished) this job id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} is already claimed by another worker")
        self.job_id = job_id


class SourceUnavailableError(DocumindError):
    """The uploaded file could not be read from its source location."""


class InvalidDocumentError(DocumindError):
    """The source was readable but is not a usable PDF."""


class ExtractionError(DocumindError):
    """Both the primary and the fallback text extraction failed."""


class EmbeddingServiceError(DocumindError):
    """The embedding service is unreachable or misconfigured."""


class EmbeddingRejectedError(DocumindError):
    """The embedding service returned no usable vector for one input."""


class EmbeddingDimensionError(EmbeddingRejectedError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Expected embedding dimension {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class VectorStoreError(DocumindError):
    """Vector store operation failed for a reason other than a missing collection."""


class CollectionNotFoundError(VectorStoreError):
    def __init__(self, collection: str) -> None:
        super().__init__(f"Collection {collection} does not exist")
        self.collection = collection


class CollectionExistsError(VectorStoreError):
    def __init__(self, collection: str) -> None:
        super().__init__(f"Collection {collection} already exists")
        self.collection = collection


__all__ = [
    "DocumindError",
    "JobPayloadError",
    "DuplicateJobError",
    "SourceUnavailableError",
    "InvalidDocumentError",
    "ExtractionError",
    "EmbeddingServiceError",
    "EmbeddingRejectedError",
    "EmbeddingDimensionError",
    "VectorStoreError",
    "CollectionNotFoundError",
    "CollectionExistsError",
]
