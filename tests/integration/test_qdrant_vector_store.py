from __future__ import annotations

import os
import uuid

import pytest

from documind.embeddings.client import EmbeddingClient
from documind.embeddings.hash import HashEmbeddingProvider
from documind.errors import CollectionExistsError, CollectionNotFoundError
from documind.models.common import CleanedChunk, VectorRecord
from documind.storage.gateway import VectorStoreGateway
from documind.storage.vector_store import QdrantVectorStore, StoredPoint

DIM = 16


@pytest.fixture(params=["local", "server"])
def qdrant_client(request):
    qdrant = pytest.importorskip("qdrant_client")
    if request.param == "local":
        client = qdrant.QdrantClient(location=":memory:")
    else:
        host = os.getenv("TEST_QDRANT_HOST", "localhost")
        port = int(os.getenv("TEST_QDRANT_PORT", "6333"))
        client = qdrant.QdrantClient(host=host, port=port)
        try:
            client.get_collections()
        except Exception as exc:  # pragma: no cover - environment dependent
            pytest.skip(f"Qdrant not available: {exc}")
    yield client
    client.close()


@pytest.fixture()
def collection_name(qdrant_client):
    name = f"user_ci{uuid.uuid4().hex[:8]}_documents"
    yield name
    try:
        qdrant_client.delete_collection(collection_name=name)
    except Exception:  # pragma: no cover - cleanup only
        pass


def test_missing_and_existing_collections_map_to_errors(qdrant_client, collection_name):
    store = QdrantVectorStore(qdrant_client)
    with pytest.raises(CollectionNotFoundError):
        store.open_collection(collection_name)

    store.create_collection(collection_name, dimension=DIM, distance="cosine")
    info = store.open_collection(collection_name)
    assert info.dimension == DIM
    assert info.distance == "cosine"

    with pytest.raises(CollectionExistsError):
        store.create_collection(collection_name, dimension=DIM, distance="cosine")
    with pytest.raises(CollectionNotFoundError):
        store.search(f"{collection_name}_absent", [0.1] * DIM, limit=1)


def test_upsert_and_search(qdrant_client, collection_name):
    store = QdrantVectorStore(qdrant_client, metadata_fields={"environment": "test"})
    store.create_collection(collection_name, dimension=DIM, distance="cosine")
    store.upsert(
        collection_name,
        [
            StoredPoint(point_id=str(uuid.uuid4()), vector=[1.0] + [0.0] * (DIM - 1), payload={"text": "first"}),
            StoredPoint(point_id=str(uuid.uuid4()), vector=[0.0, 1.0] + [0.0] * (DIM - 2), payload={"text": "second"}),
        ],
    )
    matches = store.search(collection_name, [1.0] + [0.0] * (DIM - 1), limit=1)
    assert [match.payload["text"] for match in matches] == ["first"]
    assert matches[0].payload["environment"] == "test"


def test_gateway_round_trip_on_qdrant(qdrant_client):
    user_id = f"ci{uuid.uuid4().hex[:8]}"
    embeddings = EmbeddingClient(HashEmbeddingProvider(dimension=DIM), dimension=DIM)
    gateway = VectorStoreGateway(QdrantVectorStore(qdrant_client), embeddings)
    try:
        handle = gateway.resolve_or_create_collection(user_id)
        assert handle.created is True
        chunk = CleanedChunk(index=0, text="quarterly revenue report", metadata={"page_number": 1})
        record = VectorRecord(chunk=chunk, vector=embeddings.embed(chunk.text), user_id=user_id, job_id="job-1")
        assert gateway.append(handle, record) is True

        results = gateway.retrieve(user_id, "quarterly revenue report", 2)
        assert [result.text for result in results] == ["quarterly revenue report"]
        assert gateway.resolve_or_create_collection(user_id).created is False
    finally:
        qdrant_client.delete_collection(collection_name=f"user_{user_id}_documents")
