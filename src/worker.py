"""
Indexing Worker Process
=======================

Run with ``python -m src.worker``.

Consumes indexing jobs from the Redis queue with bounded concurrency.
SIGINT/SIGTERM stop reserving new jobs and wait for in-flight ones. When
``RECONCILE_STALE_AFTER_SECONDS`` is set, an interval sweep marks RUNNING
jobs abandoned by a crashed worker as FAILED. Stranded queue messages are
only reclaimed when ``QUEUE_RECLAIM_ON_START`` is set; a reclaimed message
whose job already left QUEUED is acked without reprocessing.
"""

import asyncio
import signal

from src.bootstrap import build_container
from src.config import settings
from src.infrastructure.database import close_database, init_database
from src.knowledge.application import WorkerPool
from src.shared.infrastructure.logging import get_logger, setup_logging
from src.shared.infrastructure.scheduler import IntervalScheduler

logger = get_logger(__name__)


async def run_worker() -> None:
    setup_logging(settings.log_level, settings.environment)
    init_database()
    container = build_container()

    await container.vector_index.initialize()
    if settings.queue_reclaim_on_start:
        await container.queue.reclaim_processing()

    pool = WorkerPool(container.queue, container.indexer, settings.worker_concurrency)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, pool.request_stop)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass

    scheduler = None
    if container.reconciler is not None:
        scheduler = IntervalScheduler("kb-stale-job-sweep", settings.reconcile_interval_seconds)
        await scheduler.start(container.reconciler.sweep)

    logger.info(
        "Indexing worker started",
        extra={"concurrency": pool.concurrency, "queue": container.queue.name},
    )
    try:
        await pool.run()
    finally:
        if scheduler is not None:
            await scheduler.stop()
        await container.close()
        await close_database()
        logger.info("Indexing worker stopped")


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
