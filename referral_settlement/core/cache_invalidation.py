"""
Paced cache invalidation.

A single worker owns one in-memory queue of cache keys. Producers call
``clear_cache`` and return immediately; the worker deletes keys one at a time,
leaving at least ``delay_seconds`` between two deletions so bursts of writes
never hammer Redis.
"""
import asyncio
import time
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog

from referral_settlement.config import get_settings
from referral_settlement.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class CacheInvalidationWorker:
    """
    Single-consumer background task draining cache keys into ``DEL`` calls.

    Lifecycle: constructed and started once when the application starts, never
    restarted, stopped on shutdown after a best-effort drain.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        delay_seconds: Optional[float] = None,
    ):
        """
        Initialize the worker.

        Args:
            redis_client: Redis client the keys are deleted from
            delay_seconds: Minimum spacing between two deletions
        """
        settings = get_settings()
        self.redis_client = redis_client
        self.delay_seconds = (
            settings.cache_invalidation_delay_seconds if delay_seconds is None else delay_seconds
        )
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._task: Optional[asyncio.Task[Any]] = None
        self._started = False
        self._last_deletion: Optional[float] = None

        logger.info("cache_invalidation_worker_initialized", delay_seconds=self.delay_seconds)

    @property
    def is_running(self) -> bool:
        """Whether the consumer task is alive."""
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        """Number of keys waiting to be deleted."""
        return self._queue.qsize()

    def clear_cache(self, *keys: str) -> None:
        """
        Enqueue keys for deletion and return without waiting.

        Args:
            *keys: Cache keys to delete
        """
        for key in keys:
            self._queue.put_nowait(key)
            logger.debug("cache_invalidation_enqueued", cache_key=key)
        metrics.set_invalidation_queue_depth(self._queue.qsize())

    def start(self) -> None:
        """
        Start the consumer task.

        Raises:
            RuntimeError: If the worker was already started once
        """
        if self._started:
            raise RuntimeError("Cache invalidation worker can only be started once")
        self._started = True
        self._task = asyncio.create_task(self._run(), name="cache-invalidation-worker")
        logger.info("cache_invalidation_worker_started")

    async def _run(self) -> None:
        try:
            while True:
                key = await self._queue.get()
                try:
                    await self._wait_for_slot()
                    await self._delete(key)
                finally:
                    self._queue.task_done()
                    metrics.set_invalidation_queue_depth(self._queue.qsize())
        finally:
            logger.info("cache_invalidation_worker_stopped")

    async def _wait_for_slot(self) -> None:
        if self._last_deletion is None:
            return
        elapsed = time.monotonic() - self._last_deletion
        if elapsed < self.delay_seconds:
            await asyncio.sleep(self.delay_seconds - elapsed)

    async def _delete(self, key: str) -> None:
        try:
            await self.redis_client.delete(key)
            metrics.record_cache_invalidation("success")
            logger.info("cache_cleared", cache_key=key)
        except Exception as e:
            metrics.record_cache_invalidation("failed")
            logger.error("cache_clear_failed", cache_key=key, error=str(e))
        finally:
            self._last_deletion = time.monotonic()

    async def stop(self, drain_timeout: Optional[float] = None) -> None:
        """
        Stop the worker, first giving queued keys a chance to be deleted.

        Args:
            drain_timeout: Seconds to wait for the queue to empty
        """
        if self._task is None:
            return

        if drain_timeout is None:
            drain_timeout = get_settings().cache_invalidation_drain_timeout

        if self.is_running:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "cache_invalidation_drain_timeout",
                    abandoned_keys=self._queue.qsize(),
                )

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
