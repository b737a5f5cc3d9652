#!/usr/bin/env python3
"""documind RQ worker entry point.

Usage:
    # Pool of ``worker.concurrency`` processes on the upload queue
    python scripts/run_worker.py

    # Override concurrency and queue
    python scripts/run_worker.py --concurrency 8 --queue priority

    # Single worker process, exit when the queue is empty
    python scripts/run_worker.py --single --burst

Every setting can also be overridden from the environment, e.g.
``DOCUMIND_STORAGE__VECTOR_BACKEND=qdrant``.
"""

from __future__ import annotations

import argparse
import logging
import sys

from documind.config.settings import get_settings, set_settings
from documind.telemetry.logger import configure_logging

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run documind ingestion workers")
    parser.add_argument("--concurrency", type=int, default=None, help="Number of worker processes")
    parser.add_argument("--queue", default=None, help="Queue name to consume")
    parser.add_argument("--single", action="store_true", help="Run one worker in this process")
    parser.add_argument("--burst", action="store_true", help="Exit once the queue is drained")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()
    updates = {}
    if args.concurrency is not None:
        updates["worker"] = settings.worker.model_copy(update={"concurrency": args.concurrency})
    if args.queue:
        updates["queue"] = settings.queue.model_copy(update={"queue_name": args.queue})
    if updates:
        settings = settings.model_copy(update=updates)
        set_settings(settings)
    configure_logging(settings.log_level)

    logger.info("Queue: %s", settings.queue.queue_name)
    logger.info("Concurrency: %s", 1 if args.single else settings.worker.concurrency)
    logger.info("Vector backend: %s", settings.storage.vector_backend)
    logger.info("Embeddings: %s (%s, dim=%s)", settings.embeddings.provider, settings.embeddings.model, settings.embeddings.dimension)
    logger.info("Progress backend: %s", settings.progress.backend)

    try:
        if args.single:
            from documind.workers.pool import run_rq_worker

            run_rq_worker(settings, burst=args.burst)
        else:
            from documind.workers.pool import run_rq_worker_pool

            run_rq_worker_pool(settings, burst=args.burst)
    except KeyboardInterrupt:
        logger.info("Shutting down worker gracefully...")
        sys.exit(0)
    except Exception as exc:
        logger.error("Failed to start worker: %s", exc, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
