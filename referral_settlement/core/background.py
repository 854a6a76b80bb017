"""
Best-effort outbound tasks.

Side effects such as settlement e-mails are spawned as detached asyncio tasks.
The caller never awaits them and never sees their outcome; every failure is
caught and logged here.
"""
import asyncio
from typing import Any, Awaitable, Callable, Set

import structlog

from referral_settlement.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class BestEffortDispatcher:
    """Spawns fire-and-forget coroutines and keeps them alive until they finish."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        """Number of tasks still running."""
        return len(self._tasks)

    def spawn(
        self,
        name: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> None:
        """
        Schedule ``func(*args, **kwargs)`` without awaiting it.

        Args:
            name: Task name used in logs and metrics
            func: Coroutine function to run
            *args: Positional arguments
            **kwargs: Keyword arguments
        """
        task = asyncio.create_task(self._run(name, func, *args, **kwargs), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(
        self,
        name: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> None:
        try:
            await func(*args, **kwargs)
            metrics.record_background_task(name, "success")
        except asyncio.CancelledError:
            logger.warning("background_task_cancelled", task=name)
            raise
        except Exception as e:
            metrics.record_background_task(name, "failed")
            logger.error(
                "background_task_failed",
                task=name,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def drain(self, timeout: float | None = None) -> None:
        """
        Wait for running tasks, cancelling whatever is left after ``timeout``.

        Args:
            timeout: Seconds to wait, ``None`` waits forever
        """
        if not self._tasks:
            return

        tasks = list(self._tasks)
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("background_tasks_abandoned", count=len(pending))
        logger.info("background_tasks_drained", completed=len(done))
