from types import SimpleNamespace

from documind.embeddings.client import EmbeddingClient
from documind.embeddings.hash import HashEmbeddingProvider
from documind.models.common import CleanedChunk, VectorRecord
from documind.services.generation import NO_DOCUMENTS_MESSAGE, AnswerService
from documind.services.search import RetrievalService
from documind.storage.gateway import VectorStoreGateway
from documind.storage.vector_store import InMemoryVectorStore
from documind.telemetry.logger import AuditLogger, MetricsRecorder


class FakeCompletions:
    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeChatClient:
    def __init__(self, reply=" The report covers revenue. "):
        self.completions = FakeCompletions(reply)
        self.chat = SimpleNamespace(completions=self.completions)


def _services():
    embeddings = EmbeddingClient(HashEmbeddingProvider(dimension=32), dimension=32)
    gateway = VectorStoreGateway(InMemoryVectorStore(), embeddings)
    metrics = MetricsRecorder()
    retrieval = RetrievalService(gateway=gateway, metrics=metrics, audit_logger=AuditLogger(), default_k=2)
    return gateway, embeddings, retrieval, metrics


def _ingest(gateway, embeddings, user_id, texts):
    handle = gateway.resolve_or_create_collection(user_id)
    for index, text in enumerate(texts):
        chunk = CleanedChunk(index=index, text=text, metadata={"page_number": index + 1})
        gateway.append(handle, VectorRecord(chunk=chunk, vector=embeddings.embed(text), user_id=user_id, job_id="job"))


def test_retrieval_defaults_to_two_results():
    gateway, embeddings, retrieval, metrics = _services()
    _ingest(gateway, embeddings, "u1", ["revenue grew in q3", "costs fell in q3", "hiring paused", "new office"])

    results = retrieval.retrieve("u1", "revenue grew in q3")

    assert len(results) == 2
    assert results[0].text == "revenue grew in q3"
    assert results[0].metadata == {"page_number": 1}
    assert metrics.snapshot()["retrieval"]["requests"] == 1


def test_retrieval_for_user_without_documents_is_empty():
    _, _, retrieval, _ = _services()
    assert retrieval.retrieve("new-user", "anything at all") == []
    assert retrieval.retrieve("new-user", "   ") == []


def test_answer_without_documents_uses_fixed_reply():
    _, _, retrieval, _ = _services()
    chat = FakeChatClient()
    answer = AnswerService(retrieval=retrieval, chat_client=chat, model="gpt-4o-mini").answer("new-user", "what is this?")

    assert answer.message == NO_DOCUMENTS_MESSAGE
    assert answer.docs == []
    assert chat.completions.calls == []


def test_answer_sends_retrieved_context_to_chat_model():
    gateway, embeddings, retrieval, _ = _services()
    _ingest(gateway, embeddings, "u1", ["revenue grew in q3", "hiring paused"])
    chat = FakeChatClient()

    answer = AnswerService(retrieval=retrieval, chat_client=chat, model="gpt-4o-mini").answer("u1", "revenue grew in q3", k=1)

    assert answer.message == "The report covers revenue."
    assert [doc.text for doc in answer.docs] == ["revenue grew in q3"]
    call = chat.completions.calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert "revenue grew in q3" in call["messages"][1]["content"]
    assert call["messages"][1]["content"].endswith("User Query: revenue grew in q3")
    assert answer.as_dict()["docs"][0]["text"] == "revenue grew in q3"
