from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from threading import RLock
from typing import Dict, List, Mapping, Sequence

from ..errors import CollectionExistsError, CollectionNotFoundError, VectorStoreError

logger = logging.getLogger(__name__)

_MISSING_MARKERS = ("not found", "does not exist", "doesn't exist")
_CONFLICT_MARKERS = ("already exists",)


@dataclass(frozen=True, slots=True)
class CollectionInfo:
    name: str
    dimension: int
    distance: str


@dataclass(slots=True)
class StoredPoint:
    point_id: str
    vector: Sequence[float]
    payload: Dict[str, object] = field(default_factory=dict)


@dataclass(slots=True)
class ScoredPoint:
    point_id: str
    score: float
    payload: Dict[str, object]


class VectorStoreClient:
    """Collection-level operations the gateway needs from a vector database."""

    def open_collection(self, name: str) -> CollectionInfo:
        """Return collection info or raise :class:`CollectionNotFoundError`."""
        raise NotImplementedError

    def create_collection(self, name: str, *, dimension: int, distance: str) -> None:
        """Create a collection or raise :class:`CollectionExistsError` if present."""
        raise NotImplementedError

    def upsert(self, name: str, points: Sequence[StoredPoint]) -> None:
        raise NotImplementedError

    def search(self, name: str, vector: Sequence[float], *, limit: int) -> List[ScoredPoint]:
        raise NotImplementedError

    def close(self) -> None:
        return None


class InMemoryVectorStore(VectorStoreClient):
    """Thread-safe in-memory vector store supporting cosine similarity."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._collections: Dict[str, CollectionInfo] = {}
        self._points: Dict[str, Dict[str, StoredPoint]] = {}

    def open_collection(self, name: str) -> CollectionInfo:
        with self._lock:
            info = self._collections.get(name)
        if info is None:
            raise CollectionNotFoundError(name)
        return info

    def create_collection(self, name: str, *, dimension: int, distance: str) -> None:
        with self._lock:
            if name in self._collections:
                raise CollectionExistsError(name)
            self._collections[name] = CollectionInfo(name=name, dimension=dimension, distance=distance)
            self._points[name] = {}

    def upsert(self, name: str, points: Sequence[StoredPoint]) -> None:
        with self._lock:
            info = self._collections.get(name)
            if info is None:
                raise CollectionNotFoundError(name)
            for point in points:
                if len(point.vector) != info.dimension:
                    raise VectorStoreError(
                        f"Vector dimension error: expected dim: {info.dimension}, got {len(point.vector)}"
                    )
                self._points[name][point.point_id] = StoredPoint(
                    point_id=point.point_id,
                    vector=list(point.vector),
                    payload=dict(point.payload),
                )

    def search(self, name: str, vector: Sequence[float], *, limit: int) -> List[ScoredPoint]:
        with self._lock:
            if name not in self._collections:
                raise CollectionNotFoundError(name)
            points = list(self._points[name].values())
        results = [
            ScoredPoint(point_id=point.point_id, score=_cosine(point.vector, vector), payload=dict(point.payload))
            for point in points
        ]
        results.sort(key=lambda item: item.score, reverse=True)
        return results[:limit]

    def collection_names(self) -> List[str]:
        with self._lock:
            return sorted(self._collections)

    def points(self, name: str) -> List[StoredPoint]:
        with self._lock:
            return list(self._points.get(name, {}).values())


class QdrantVectorStore(VectorStoreClient):
    """Vector store implementation backed by Qdrant collections."""

    def __init__(self, client: object, *, metadata_fields: Mapping[str, object] | None = None) -> None:
        try:
            from qdrant_client.http import models as rest
        except ModuleNotFoundError as exc:  # pragma: no cover - import guard
            raise RuntimeError("QdrantVectorStore requires the 'qdrant-client' package.") from exc
        self._client = client
        self._rest = rest
        self._metadata_fields = dict(metadata_fields or {})

    def open_collection(self, name: str) -> CollectionInfo:
        try:
            info = self._client.get_collection(collection_name=name)
        except Exception as exc:
            if is_missing_error(exc):
                raise CollectionNotFoundError(name) from exc
            raise
        params = getattr(getattr(info, "config", None), "params", None)
        vectors = getattr(params, "vectors", None)
        if isinstance(vectors, Mapping):
            # Named vectors: the unnamed default is stored under "".
            vectors = vectors.get("") or next(iter(vectors.values()), None)
        size = int(getattr(vectors, "size", 0) or 0)
        distance = getattr(vectors, "distance", None)
        distance_name = str(getattr(distance, "value", distance) or "").lower()
        return CollectionInfo(name=name, dimension=size, distance=distance_name)

    def create_collection(self, name: str, *, dimension: int, distance: str) -> None:
        vectors_config = self._rest.VectorParams(size=dimension, distance=self._distance(distance))
        try:
            self._client.create_collection(collection_name=name, vectors_config=vectors_config)
        except Exception as exc:
            if is_conflict_error(exc):
                raise CollectionExistsError(name) from exc
            raise

    def upsert(self, name: str, points: Sequence[StoredPoint]) -> None:
        structs = [
            self._rest.PointStruct(
                id=point.point_id,
                vector=list(point.vector),
                payload={**point.payload, **self._metadata_fields},
            )
            for point in points
        ]
        try:
            self._client.upsert(collection_name=name, points=structs, wait=True)
        except Exception as exc:
            if is_missing_error(exc):
                raise CollectionNotFoundError(name) from exc
            raise

    def search(self, name: str, vector: Sequence[float], *, limit: int) -> List[ScoredPoint]:
        try:
            response = self._client.query_points(
                collection_name=name,
                query=list(vector),
                limit=limit,
                with_payload=True,
            )
        except Exception as exc:
            if is_missing_error(exc):
                raise CollectionNotFoundError(name) from exc
            raise
        return [
            ScoredPoint(
                point_id=str(point.id),
                score=float(getattr(point, "score", 0.0) or 0.0),
                payload=dict(getattr(point, "payload", None) or {}),
            )
            for point in response.points
        ]

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if callable(close):
            close()

    def _distance(self, distance: str):
        lookup = {
            "cosine": self._rest.Distance.COSINE,
            "dot": self._rest.Distance.DOT,
            "euclid": self._rest.Distance.EUCLID,
        }
        try:
            return lookup[distance.lower()]
        except KeyError as exc:
            raise ValueError(f"Unsupported distance metric: {distance}") from exc


def is_missing_error(exc: BaseException) -> bool:
    """True when ``exc`` signals an absent collection.

    HTTP status and gRPC codes decide when present; message matching is only
    used for clients that report neither (e.g. qdrant-client local mode).
    """
    if isinstance(exc, CollectionNotFoundError):
        return True
    status = _status_code(exc)
    if status == 404 or _grpc_code(exc) == "NOT_FOUND":
        return True
    if status is not None and status != 400:
        return False
    return _message_has(exc, _MISSING_MARKERS)


def is_conflict_error(exc: BaseException) -> bool:
    if isinstance(exc, CollectionExistsError):
        return True
    status = _status_code(exc)
    if status == 409 or _grpc_code(exc) == "ALREADY_EXISTS":
        return True
    if status is not None and status != 400:
        return False
    return _message_has(exc, _CONFLICT_MARKERS)


def _status_code(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    return int(status) if isinstance(status, int) else None


def _grpc_code(exc: BaseException) -> str | None:
    code = getattr(exc, "code", None)
    if not callable(code):
        return None
    try:
        value = code()
    except Exception:
        return None
    return getattr(value, "name", None)


def _message_has(exc: BaseException, markers: Sequence[str]) -> bool:
    parts = [str(exc)]
    content = getattr(exc, "content", None)
    if isinstance(content, bytes):
        parts.append(content.decode("utf-8", errors="ignore"))
    text = " ".join(parts).lower()
    return any(marker in text for marker in markers)


def _cosine(left: Sequence[float], right: Sequence[float]) -> float:
    denom = _norm(left) * _norm(right)
    if math.isclose(denom, 0.0):
        return 0.0
    return float(sum(a * b for a, b in zip(left, right))) / denom


def _norm(vector: Sequence[float]) -> float:
    return math.sqrt(sum(value * value for value in vector))


__all__ = [
    "CollectionInfo",
    "StoredPoint",
    "ScoredPoint",
    "VectorStoreClient",
    "InMemoryVectorStore",
    "QdrantVectorStore",
    "is_missing_error",
    "is_conflict_error",
]
