import pytest

from documind.embeddings.hash import HashEmbeddingProvider
from documind.errors import EmbeddingServiceError, JobPayloadError, SourceUnavailableError
from documind.models.common import IngestionJob, ProgressStatus
from documind.runtime import build_runtime
from documind.services.claims import InMemoryJobClaimRegistry
from documind.services.ingestion_jobs import JobOutcome
from documind.services.progress import InMemoryProgressRecorder
from documind.storage.vector_store import InMemoryVectorStore


class BrokenProvider(HashEmbeddingProvider):
    def embed_documents(self, texts):
        raise ConnectionError("embedding endpoint unreachable")


class RejectingProvider(HashEmbeddingProvider):
    """Returns an empty vector for any text mentioning ``blocked``."""

    def __init__(self, blocked, dimension=64):
        super().__init__(dimension=dimension)
        self._blocked = blocked

    def embed_documents(self, texts):
        return [[] if self._blocked in text else self._embed(text) for text in texts]


class FlakyWriteStore(InMemoryVectorStore):
    def __init__(self, fail_on):
        super().__init__()
        self._fail_on = fail_on

    def upsert(self, name, points):
        if any(self._fail_on in str(point.payload.get("text", "")) for point in points):
            raise ConnectionError("write rejected")
        super().upsert(name, points)


@pytest.fixture()
def harness(test_settings):
    def _build(**overrides):
        recorder = InMemoryProgressRecorder()
        store = overrides.pop("vector_store", None) or InMemoryVectorStore()
        runtime = build_runtime(test_settings, vector_store=store, progress_sink=recorder, **overrides)
        return runtime, store, recorder

    return _build


def _job(path, user_id="u1", job_id="job-1"):
    return IngestionJob.create(user_id=user_id, source_location=str(path), filename=path.name, job_id=job_id)


def _stored(store, collection):
    return [point for point in store.points(collection) if not point.payload.get("placeholder")]


def _assert_monotone_until_terminal(events):
    terminal = [index for index, event in enumerate(events) if event.status.is_terminal]
    assert len(terminal) == 1
    assert terminal[0] == len(events) - 1
    values = [event.progress for event in events[:-1]]
    assert values == sorted(values)


def test_three_page_upload_stores_two_records(harness, pdf_factory):
    runtime, store, recorder = harness()
    path = pdf_factory(["Intro text here.", "", "Conclusion text here."])

    result = runtime.processor.process(_job(path))

    assert result.status is JobOutcome.COMPLETED
    summary = result.summary
    assert summary.total_units == 3
    assert summary.total_chunks == 2
    assert summary.processed == 2
    assert summary.skipped == 0
    assert summary.batches == 1
    assert summary.created_collection is True
    stored = _stored(store, "user_u1_documents")
    assert sorted(point.payload["text"] for point in stored) == ["Conclusion text here.", "Intro text here."]
    assert all(point.payload["user_id"] == "u1" for point in stored)

    events = recorder.for_job("job-1")
    _assert_monotone_until_terminal(events)
    final = events[-1]
    assert final.status is ProgressStatus.COMPLETED
    assert final.progress == 100
    assert final.details["processed"] == 2
    assert final.details["degraded"] is False
    extracted = next(event for event in events if event.progress == 25)
    assert extracted.details == {"pages": 3, "chunks": 2, "extractionMode": "layout"}


def test_queue_payload_is_accepted(harness, pdf_factory):
    runtime, store, _ = harness()
    path = pdf_factory(["A page with enough text."])
    payload = {"jobId": "job-7", "userId": "u7", "path": str(path), "filename": "notes.pdf"}

    result = runtime.processor.process(payload)

    assert result.as_dict()["status"] == "completed"
    assert len(_stored(store, "user_u7_documents")) == 1


def test_canary_failure_is_fatal_and_retryable(harness, pdf_factory):
    runtime, store, recorder = harness(embedding_provider=BrokenProvider(dimension=64))
    path = pdf_factory(["Intro text here."])

    with pytest.raises(EmbeddingServiceError):
        runtime.processor.process(_job(path))

    events = recorder.for_job("job-1")
    assert events[-1].status is ProgressStatus.ERROR
    assert events[-1].progress == 0
    assert events[-1].message.startswith("Processing failed:")
    assert store.collection_names() == []
    assert runtime.metrics.snapshot()["jobs"] == {"failed": 1}

    # The claim was released, so a queue retry runs the job again.
    with pytest.raises(EmbeddingServiceError):
        runtime.processor.process(_job(path))


def test_missing_source_fails_job(harness, tmp_path):
    runtime, _, recorder = harness()
    job = IngestionJob.create(user_id="u1", source_location=str(tmp_path / "gone.pdf"), filename="gone.pdf", job_id="job-1")

    with pytest.raises(SourceUnavailableError):
        runtime.processor.process(job)

    final = recorder.for_job("job-1")[-1]
    assert final.status is ProgressStatus.ERROR
    assert "File does not exist" in final.message


def test_malformed_payload_is_rejected_before_pipeline(harness):
    runtime, store, recorder = harness()

    with pytest.raises(JobPayloadError):
        runtime.processor.process({"userId": "u1"})
    with pytest.raises(JobPayloadError):
        runtime.processor.process("{not json")
    assert recorder.events == []

    with pytest.raises(JobPayloadError):
        runtime.processor.process({"userId": "u1", "jobId": "job-3", "filename": "x.pdf"})
    events = recorder.for_job("job-3")
    assert [event.status for event in events] == [ProgressStatus.ERROR]
    assert store.collection_names() == []


def test_rejected_embedding_skips_only_that_chunk(harness, pdf_factory):
    runtime, store, recorder = harness(embedding_provider=RejectingProvider("Intro"))
    path = pdf_factory(["Intro text here.", "Middle text here.", "Conclusion text here."])

    result = runtime.processor.process(_job(path))

    summary = result.summary
    assert result.status is JobOutcome.COMPLETED
    assert result.degraded is True
    assert summary.processed == 2
    assert summary.skipped == 1
    assert dict(summary.skip_reasons) == {"embedding_rejected": 1}
    assert sorted(point.payload["text"] for point in _stored(store, "user_u1_documents")) == [
        "Conclusion text here.",
        "Middle text here.",
    ]
    final = recorder.for_job("job-1")[-1]
    assert final.status is ProgressStatus.COMPLETED
    assert final.details["degraded"] is True


def test_failed_append_skips_only_that_chunk(harness, pdf_factory):
    runtime, store, _ = harness(vector_store=FlakyWriteStore("Conclusion"))
    path = pdf_factory(["Intro text here.", "Conclusion text here."])

    result = runtime.processor.process(_job(path))

    assert result.summary.processed == 1
    assert dict(result.summary.skip_reasons) == {"append_failed": 1}
    assert [point.payload["text"] for point in _stored(store, "user_u1_documents")] == ["Intro text here."]


def test_claimed_job_is_not_processed_twice(harness, pdf_factory):
    runtime, store, recorder = harness()
    path = pdf_factory(["Intro text here."])
    runtime.claims.claim("job-1")

    result = runtime.processor.process(_job(path))

    assert result.status is JobOutcome.DUPLICATE
    assert recorder.for_job("job-1") == []
    assert store.collection_names() == []


def test_completed_job_redelivery_is_a_duplicate(harness, pdf_factory):
    runtime, store, recorder = harness()
    path = pdf_factory(["Intro text here."])
    runtime.processor.process(_job(path))
    before = len(recorder.events)

    result = runtime.processor.process(_job(path))

    assert result.status is JobOutcome.DUPLICATE
    assert len(recorder.events) == before
    assert len(_stored(store, "user_u1_documents")) == 1


def test_users_get_separate_collections(harness, pdf_factory):
    runtime, store, _ = harness()
    runtime.processor.process(_job(pdf_factory(["Alpha user document."], name="a.pdf"), user_id="alpha", job_id="j-a"))
    runtime.processor.process(_job(pdf_factory(["Beta user document."], name="b.pdf"), user_id="beta", job_id="j-b"))

    assert store.collection_names() == ["user_alpha_documents", "user_beta_documents"]
    assert runtime.retrieval.retrieve("alpha", "Beta user document.", k=5)[0].text == "Alpha user document."
    assert all(item.text != "Beta user document." for item in runtime.retrieval.retrieve("alpha", "Beta", k=5))


def test_document_without_text_completes_with_nothing_stored(harness, pdf_factory):
    runtime, store, recorder = harness()
    result = runtime.processor.process(_job(pdf_factory(["", ""])))

    assert result.summary.total_units == 0
    assert result.summary.processed == 0
    assert _stored(store, "user_u1_documents") == []
    assert recorder.for_job("job-1")[-1].status is ProgressStatus.COMPLETED


class CompleteFailsClaims(InMemoryJobClaimRegistry):
    def complete(self, job_id):
        raise ConnectionError("claim store unreachable")


class ClaimFailsClaims(InMemoryJobClaimRegistry):
    def claim(self, job_id):
        raise ConnectionError("claim store unreachable")


def test_failed_claim_completion_still_ends_with_completed_event(harness, pdf_factory):
    runtime, store, recorder = harness(claims=CompleteFailsClaims())

    result = runtime.processor.process(_job(pdf_factory(["Intro text here."])))

    assert result.status is JobOutcome.COMPLETED
    events = recorder.for_job("job-1")
    _assert_monotone_until_terminal(events)
    assert events[-1].status is ProgressStatus.COMPLETED
    assert len(_stored(store, "user_u1_documents")) == 1


def test_claim_store_outage_fails_job_with_error_event(harness, pdf_factory):
    runtime, store, recorder = harness(claims=ClaimFailsClaims())

    with pytest.raises(ConnectionError):
        runtime.processor.process(_job(pdf_factory(["Intro text here."])))

    events = recorder.for_job("job-1")
    assert [event.status for event in events] == [ProgressStatus.ERROR]
    assert events[0].details == {"errorType": "ConnectionError"}
    assert store.collection_names() == []
