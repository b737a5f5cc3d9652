import pytest

from documind.errors import SourceUnavailableError
from documind.models.common import IngestionJob
from documind.runtime import build_runtime
from documind.services.progress import InMemoryProgressRecorder
from documind.storage.vector_store import InMemoryVectorStore
from documind.workers import tasks
from documind.workers.dispatcher import TASK_PATH, RQIngestionDispatcher
from documind.workers.pool import LocalWorkerPool, run_rq_worker


class FakeQueue:
    def __init__(self, count=0):
        self.count = count
        self.enqueued = []

    def enqueue(self, func, *args, **kwargs):
        self.enqueued.append((func, args, kwargs))
        return kwargs.get("job_id")


@pytest.fixture()
def runtime(test_settings):
    return build_runtime(test_settings, vector_store=InMemoryVectorStore(), progress_sink=InMemoryProgressRecorder())


def test_dispatcher_uses_job_id_and_retry_policy():
    queue = FakeQueue()
    dispatcher = RQIngestionDispatcher(queue=queue, max_retries=3, retry_intervals=[15, 30])
    job = IngestionJob.create(user_id="u1", source_location="https://files.example.com/a.pdf", filename="a.pdf")

    assert dispatcher.enqueue(job) == job.job_id

    func, _, kwargs = queue.enqueued[0]
    assert func == TASK_PATH
    assert kwargs["job_id"] == job.job_id
    assert kwargs["kwargs"] == {"payload": job.to_payload()}
    assert kwargs["retry"].max == 3
    assert kwargs["meta"]["user_id"] == "u1"


def test_dispatcher_without_retries():
    queue = FakeQueue()
    dispatcher = RQIngestionDispatcher(queue=queue, max_retries=0)
    dispatcher.enqueue(IngestionJob.create(user_id="u1", source_location="/tmp/a.pdf", filename="a.pdf"))
    assert queue.enqueued[0][2]["retry"] is None


def test_dispatcher_backpressure():
    dispatcher = RQIngestionDispatcher(queue=FakeQueue(count=5), max_queue_length=5)
    with pytest.raises(RuntimeError):
        dispatcher.enqueue(IngestionJob.create(user_id="u1", source_location="/tmp/a.pdf", filename="a.pdf"))


def test_task_entry_point_processes_payload(runtime, pdf_factory):
    path = pdf_factory(["Intro text here.", "", "Conclusion text here."])
    job = IngestionJob.create(user_id="u1", source_location=str(path), filename=path.name, job_id="job-1")
    tasks.install_runtime(runtime)
    try:
        result = tasks.process_ingestion_job(payload=job.to_payload())
    finally:
        tasks.install_runtime(None)

    assert result["status"] == "completed"
    assert result["summary"]["processed"] == 2


def test_task_entry_point_propagates_fatal_errors(runtime, tmp_path):
    job = IngestionJob.create(user_id="u1", source_location=str(tmp_path / "missing.pdf"), filename="missing.pdf")
    tasks.install_runtime(runtime)
    try:
        with pytest.raises(SourceUnavailableError):
            tasks.process_ingestion_job(payload=job.to_payload())
    finally:
        tasks.install_runtime(None)


def test_local_pool_isolates_job_failures(runtime, pdf_factory, tmp_path):
    jobs = [
        IngestionJob.create(
            user_id="alpha",
            source_location=str(pdf_factory(["Alpha user document."], name="a.pdf")),
            filename="a.pdf",
            job_id="job-a",
        ),
        IngestionJob.create(
            user_id="broken",
            source_location=str(tmp_path / "missing.pdf"),
            filename="missing.pdf",
            job_id="job-b",
        ),
        IngestionJob.create(
            user_id="gamma",
            source_location=str(pdf_factory(["Gamma user document."], name="c.pdf")),
            filename="c.pdf",
            job_id="job-c",
        ),
    ]
    with LocalWorkerPool(runtime.processor, concurrency=3) as pool:
        outcomes = pool.run_all(jobs)

    assert [outcome.job_id for outcome in outcomes] == ["job-a", "job-b", "job-c"]
    assert [outcome.ok for outcome in outcomes] == [True, False, True]
    assert isinstance(outcomes[1].error, SourceUnavailableError)
    assert outcomes[0].result.summary.processed == 1
    assert outcomes[2].result.summary.processed == 1
    assert sorted(runtime.vector_store.collection_names()) == ["user_alpha_documents", "user_gamma_documents"]


def test_local_pool_requires_capacity(runtime):
    with pytest.raises(ValueError):
        LocalWorkerPool(runtime.processor, concurrency=0)


class FakeWorker:
    created = []

    def __init__(self, queues, *, connection, name):
        self.queues = queues
        self.connection = connection
        self.name = name
        self.work_kwargs = None
        FakeWorker.created.append(self)

    def work(self, **kwargs):
        self.work_kwargs = kwargs


def test_single_worker_runs_scheduler_for_interval_retries(test_settings):
    FakeWorker.created.clear()
    connection = object()

    run_rq_worker(test_settings, burst=True, connection=connection, worker_class=FakeWorker)

    (worker,) = FakeWorker.created
    assert worker.queues == [test_settings.queue.queue_name]
    assert worker.connection is connection
    assert worker.name.startswith(f"{test_settings.worker.name_prefix}-{test_settings.queue.queue_name}-")
    assert worker.work_kwargs == {"burst": True, "with_scheduler": True}
