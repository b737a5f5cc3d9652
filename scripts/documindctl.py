from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from documind.config.settings import get_settings
from documind.models.common import IngestionJob
from documind.runtime import worker_runtime
from documind.services.claims import InMemoryJobClaimRegistry
from documind.services.progress import LoggingProgressSink
from documind.telemetry.logger import configure_logging
from documind.workers.dispatcher import RQIngestionDispatcher


def build_job(args: argparse.Namespace) -> IngestionJob:
    source = args.source
    if "://" not in source:
        source = str(Path(source).expanduser().resolve())
    filename = args.filename or Path(args.source).name
    return IngestionJob.create(user_id=args.user, source_location=source, filename=filename, job_id=args.job_id)


def cmd_enqueue(args: argparse.Namespace) -> None:
    settings = get_settings()
    job = build_job(args)
    dispatcher = RQIngestionDispatcher(
        redis_url=settings.queue.redis_url,
        queue_name=settings.queue.queue_name,
        default_timeout=settings.queue.default_timeout,
        max_retries=settings.queue.max_retries,
        retry_intervals=settings.queue.retry_intervals,
    )
    dispatcher.enqueue(job)
    print(json.dumps(job.to_payload(), indent=2))


def cmd_ingest(args: argparse.Namespace) -> None:
    job = build_job(args)
    with worker_runtime(progress_sink=LoggingProgressSink(), claims=InMemoryJobClaimRegistry()) as runtime:
        result = runtime.processor.process(job)
    print(json.dumps(result.as_dict(), indent=2, default=str))


def cmd_query(args: argparse.Namespace) -> None:
    with worker_runtime() as runtime:
        results = runtime.retrieval.retrieve(args.user, args.query, k=args.k)
    payload = [{"text": item.text, "score": item.score, "metadata": item.metadata} for item in results]
    print(json.dumps(payload, indent=2, default=str))


def cmd_ask(args: argparse.Namespace) -> None:
    with worker_runtime() as runtime:
        if runtime.answers is None:
            raise SystemExit("Answer generation is disabled or no chat API key is configured")
        response = runtime.answers.answer(args.user, args.query, k=args.k)
    print(json.dumps(response.as_dict(), indent=2, default=str))


def main() -> None:
    parser = argparse.ArgumentParser(description="documind CLI helper")
    parser.add_argument("--log-level", default=None)
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, func, help_text in (
        ("enqueue", cmd_enqueue, "Queue a PDF for ingestion by the workers"),
        ("ingest", cmd_ingest, "Process a PDF inline in this process"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("user")
        sub.add_argument("source", help="Local path or http(s) URL of the PDF")
        sub.add_argument("--filename")
        sub.add_argument("--job-id")
        sub.set_defaults(func=func)

    for name, func, help_text in (
        ("query", cmd_query, "Return the chunks most similar to a query"),
        ("ask", cmd_ask, "Answer a question from the user's documents"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("user")
        sub.add_argument("query")
        sub.add_argument("-k", type=int, default=None)
        sub.set_defaults(func=func)

    args = parser.parse_args()
    configure_logging(args.log_level or get_settings().log_level)
    args.func(args)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        sys.exit(1)
