from __future__ import annotations

import logging
import uuid
from typing import List

from ..embeddings.client import EmbeddingClient
from ..errors import CollectionExistsError, CollectionNotFoundError, VectorStoreError
from ..models.common import CollectionHandle, RetrievedChunk, VectorRecord, collection_name_for
from .vector_store import CollectionInfo, StoredPoint, VectorStoreClient

logger = logging.getLogger(__name__)

PLACEHOLDER_TEXT = "Initial document to create collection"
PLACEHOLDER_METADATA = {"text": "This is a placeholder document"}


class VectorStoreGateway:
    """Per-user collection management on top of a :class:`VectorStoreClient`.

    Collections are created lazily the first time a user ingests a document.
    Concurrent creators for the same user are reconciled by the store's
    create-if-absent primitive: whoever loses the race simply reopens.
    """

    def __init__(
        self,
        store: VectorStoreClient,
        embeddings: EmbeddingClient,
        *,
        distance: str = "cosine",
    ) -> None:
        self._store = store
        self._embeddings = embeddings
        self._distance = distance

    @property
    def dimension(self) -> int:
        return self._embeddings.dimension

    def resolve_or_create_collection(self, user_id: str) -> CollectionHandle:
        name = collection_name_for(user_id)
        created = False
        try:
            info = self._store.open_collection(name)
        except CollectionNotFoundError:
            try:
                self._store.create_collection(name, dimension=self.dimension, distance=self._distance)
                created = True
                logger.info("vector_store.collection_created", extra={"collection": name, "user_id": user_id})
            except CollectionExistsError:
                logger.info("vector_store.collection_race", extra={"collection": name, "user_id": user_id})
            info = self._store.open_collection(name)
        self._check_dimension(info)
        handle = CollectionHandle(
            name=name,
            user_id=user_id,
            dimension=info.dimension,
            distance=info.distance or self._distance,
            created=created,
        )
        if created:
            self._seed_placeholder(handle)
        return handle

    def append(self, handle: CollectionHandle, record: VectorRecord) -> bool:
        if record.user_id != handle.user_id:
            raise VectorStoreError(
                f"Record for user {record.user_id} cannot be written to collection {handle.name}"
            )
        point = StoredPoint(
            point_id=record_point_id(record.user_id, record.job_id, record.chunk.index),
            vector=list(record.vector),
            payload={
                "text": record.chunk.text,
                "metadata": dict(record.chunk.metadata),
                "user_id": record.user_id,
                "job_id": record.job_id,
                "placeholder": False,
            },
        )
        try:
            self._store.upsert(handle.name, [point])
        except Exception as exc:
            logger.warning(
                "vector_store.append_failed",
                extra={
                    "collection": handle.name,
                    "job_id": record.job_id,
                    "chunk_index": record.chunk.index,
                    "error": str(exc),
                },
                exc_info=True,
            )
            return False
        return True

    def retrieve(self, user_id: str, query: str, k: int) -> List[RetrievedChunk]:
        if k <= 0:
            return []
        name = collection_name_for(user_id)
        try:
            self._store.open_collection(name)
            vector = self._embeddings.embed(query)
            # One extra slot covers the placeholder record.
            matches = self._store.search(name, vector, limit=k + 1)
        except CollectionNotFoundError:
            logger.info("vector_store.collection_missing", extra={"collection": name, "user_id": user_id})
            return []
        results: List[RetrievedChunk] = []
        for match in matches:
            payload = match.payload
            if payload.get("placeholder"):
                continue
            metadata = payload.get("metadata")
            results.append(
                RetrievedChunk(
                    text=str(payload.get("text", "")),
                    metadata=dict(metadata) if isinstance(metadata, dict) else {},
                    score=match.score,
                )
            )
        return results[:k]

    def _check_dimension(self, info: CollectionInfo) -> None:
        if info.dimension and info.dimension != self.dimension:
            raise VectorStoreError(
                f"Collection {info.name} stores {info.dimension}-dimensional vectors, "
                f"embedding model produces {self.dimension}"
            )

    def _seed_placeholder(self, handle: CollectionHandle) -> None:
        vector = self._embeddings.embed(PLACEHOLDER_TEXT)
        point = StoredPoint(
            point_id=placeholder_point_id(handle.name),
            vector=vector,
            payload={
                "text": PLACEHOLDER_TEXT,
                "metadata": dict(PLACEHOLDER_METADATA),
                "user_id": handle.user_id,
                "placeholder": True,
            },
        )
        self._store.upsert(handle.name, [point])


def record_point_id(user_id: str, job_id: str, chunk_index: int) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{user_id}:{job_id}:{chunk_index}"))


def placeholder_point_id(collection: str) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{collection}:placeholder"))


__all__ = [
    "PLACEHOLDER_TEXT",
    "VectorStoreGateway",
    "placeholder_point_id",
    "record_point_id",
]
