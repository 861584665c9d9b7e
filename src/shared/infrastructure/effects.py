"""
Non-critical Effects
====================

Helpers for side effects whose failure must never change the outcome of
the operation that triggered them (usage metering, disk cleanup).

Failures are logged with the effect name and swallowed here, so callers
keep their success path free of the effect's error types.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Set

from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


async def run_non_critical(
    name: str,
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    **kwargs: Any,
) -> Optional[Any]:
    """
    Await a best-effort effect, logging and swallowing any failure.

    Returns:
        The effect's result, or None when it failed
    """
    try:
        return await func(*args, **kwargs)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning(
            "Non-critical effect failed",
            extra={"effect": name, "error": str(e), "error_type": type(e).__name__},
        )
        return None


class BackgroundEffects:
    """
    Fire-and-forget runner for best-effort effects.

    Keeps references to scheduled tasks until they finish so they are not
    garbage collected mid-flight, and lets shutdown drain them.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(
        self,
        name: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> asyncio.Task:
        """Schedule the effect on the running loop without awaiting it."""
        task = asyncio.get_running_loop().create_task(
            run_non_critical(name, func, *args, **kwargs)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight effects (used on shutdown and in tests)."""
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout)
