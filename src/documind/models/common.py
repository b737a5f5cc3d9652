from __future__ import annotations

import json
import random
import string
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..errors import JobPayloadError

_PAYLOAD_ALIASES: Dict[str, tuple[str, ...]] = {
    "job_id": ("job_id", "jobId"),
    "user_id": ("user_id", "userId"),
    "source_location": ("source_location", "sourceLocation", "path", "cloudinaryUrl", "url"),
    "filename": ("filename", "fileName"),
    "enqueued_at": ("enqueued_at", "enqueuedAt"),
}


def collection_name_for(user_id: str) -> str:
    return f"user_{user_id}_documents"


def generate_job_id(user_id: str) -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{user_id}_{int(time.time() * 1000)}_{suffix}"


@dataclass(frozen=True, slots=True)
class IngestionJob:
    job_id: str
    user_id: str
    source_location: str
    filename: str
    enqueued_at: datetime

    @classmethod
    def create(cls, *, user_id: str, source_location: str, filename: str, job_id: str | None = None) -> "IngestionJob":
        return cls.from_payload(
            {
                "job_id": job_id,
                "user_id": user_id,
                "source_location": source_location,
                "filename": filename,
            }
        )

    @classmethod
    def from_payload(cls, payload: str | bytes | Mapping[str, Any]) -> "IngestionJob":
        """Validate a queue payload and build a job from it.

        Accepts a JSON document or a mapping, in snake_case or camelCase.
        Missing job ids are generated; every other field is required.
        """
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except ValueError as exc:
                raise JobPayloadError(f"Job payload is not valid JSON: {exc}") from exc
        if not isinstance(payload, Mapping):
            raise JobPayloadError(f"Job payload must be an object, got {type(payload).__name__}")

        values = {name: _lookup(payload, aliases) for name, aliases in _PAYLOAD_ALIASES.items()}
        missing = [name for name in ("user_id", "source_location", "filename") if not values[name]]
        if missing:
            raise JobPayloadError(f"Job payload missing required fields: {', '.join(missing)}")

        user_id = values["user_id"]
        if any(ch.isspace() for ch in user_id) or "/" in user_id:
            raise JobPayloadError(f"Invalid user id: {user_id!r}")

        return cls(
            job_id=values["job_id"] or generate_job_id(user_id),
            user_id=user_id,
            source_location=values["source_location"],
            filename=values["filename"],
            enqueued_at=_parse_timestamp(values["enqueued_at"]),
        )

    @property
    def collection_name(self) -> str:
        return collection_name_for(self.user_id)

    def to_payload(self) -> Dict[str, str]:
        return {
            "jobId": self.job_id,
            "userId": self.user_id,
            "sourceLocation": self.source_location,
            "filename": self.filename,
            "enqueuedAt": self.enqueued_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class SourceMetadata:
    producer: Optional[str] = None
    format_version: Optional[str] = None
    total_pages: int = 0
    source: Optional[str] = None
    filename: Optional[str] = None
    extraction_mode: str = "layout"

    def as_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class ExtractedUnit:
    page_number: int
    raw_text: str
    source_metadata: SourceMetadata


@dataclass(frozen=True, slots=True)
class CleanedChunk:
    index: int
    text: str
    metadata: Dict[str, object] = field(default_factory=dict)

    @property
    def page_number(self) -> int | None:
        value = self.metadata.get("page_number")
        return int(value) if value is not None else None


@dataclass(frozen=True, slots=True)
class VectorRecord:
    chunk: CleanedChunk
    vector: Sequence[float]
    user_id: str
    job_id: str


@dataclass(frozen=True, slots=True)
class CollectionHandle:
    name: str
    user_id: str
    dimension: int
    distance: str
    created: bool = False


@dataclass(slots=True)
class RetrievedChunk:
    text: str
    metadata: Dict[str, object]
    score: float


class ProgressStatus(str, Enum):
    PROCESSING = "processing"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in {ProgressStatus.COMPLETED, ProgressStatus.ERROR}


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    user_id: str
    job_id: str
    progress: int
    status: ProgressStatus
    message: str
    details: Optional[Dict[str, object]] = None

    def to_payload(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "userId": self.user_id,
            "jobId": self.job_id,
            "progress": self.progress,
            "status": self.status.value,
            "message": self.message,
        }
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ChunkStatus(str, Enum):
    STORED = "stored"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class ChunkOutcome:
    chunk_index: int
    status: ChunkStatus
    reason: Optional[str] = None

    @classmethod
    def stored(cls, chunk_index: int) -> "ChunkOutcome":
        return cls(chunk_index=chunk_index, status=ChunkStatus.STORED)

    @classmethod
    def skipped(cls, chunk_index: int, reason: str) -> "ChunkOutcome":
        return cls(chunk_index=chunk_index, status=ChunkStatus.SKIPPED, reason=reason)

    @property
    def ok(self) -> bool:
        return self.status is ChunkStatus.STORED


@dataclass(slots=True)
class IngestionSummary:
    total_units: int = 0
    total_chunks: int = 0
    batches: int = 0
    processed: int = 0
    skipped: int = 0
    skip_reasons: Counter = field(default_factory=Counter)
    collection: Optional[str] = None
    created_collection: bool = False
    extraction_mode: Optional[str] = None

    def record(self, outcome: ChunkOutcome) -> None:
        if outcome.ok:
            self.processed += 1
        else:
            self.skipped += 1
            self.skip_reasons[outcome.reason or "unknown"] += 1

    @property
    def degraded(self) -> bool:
        return self.skipped > 0

    def as_details(self) -> Dict[str, object]:
        return {
            "totalUnits": self.total_units,
            "totalChunks": self.total_chunks,
            "batches": self.batches,
            "processed": self.processed,
            "skipped": self.skipped,
            "skipReasons": dict(self.skip_reasons),
            "collection": self.collection,
            "createdCollection": self.created_collection,
            "extractionMode": self.extraction_mode,
            "degraded": self.degraded,
        }


def _lookup(payload: Mapping[str, Any], aliases: Sequence[str]) -> str | None:
    for key in aliases:
        value = payload.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _parse_timestamp(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise JobPayloadError(f"Invalid enqueuedAt timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = [
    "collection_name_for",
    "generate_job_id",
    "IngestionJob",
    "SourceMetadata",
    "ExtractedUnit",
    "CleanedChunk",
    "VectorRecord",
    "CollectionHandle",
    "RetrievedChunk",
    "ProgressStatus",
    "ProgressEvent",
    "ChunkStatus",
    "ChunkOutcome",
    "IngestionSummary",
]
