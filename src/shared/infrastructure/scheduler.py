"""
Interval Scheduler
==================

Wrapper for APScheduler used for periodic background maintenance.

Manages the lifecycle of the scheduler and its single interval job.
"""

from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class IntervalScheduler:
    """
    Runs one coroutine function on a fixed interval.

    max_instances=1 keeps a slow run from overlapping the next one.
    """

    def __init__(self, job_id: str, interval_seconds: int = 300):
        self.job_id = job_id
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[object]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("Scheduler already running", extra={"job_id": self.job_id})
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id=self.job_id,
            name=self.job_id,
            misfire_grace_time=60,
            max_instances=1,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "Scheduler started",
            extra={"job_id": self.job_id, "interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Scheduler stopped", extra={"job_id": self.job_id})

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
