"""
Coalescing flush utility used for debounced auto-save.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)


class CoalescingFlush:
    """
    Delays a flush until activity pauses for ``delay`` seconds.

    Every ``schedule`` call replaces the pending run, so a burst of edits
    produces a single flush.
    """

    def __init__(self, delay: float, flush: Callable[[], Awaitable[None]], name: str = "flush"):
        if delay < 0:
            raise ValueError("Flush delay cannot be negative")
        self.delay = delay
        self._flush = flush
        self._name = name
        self._task: Optional[asyncio.Task] = None
        # Delayed runs that are past their delay and flushing
        self._inflight: Set[asyncio.Task] = set()

    def schedule(self) -> None:
        """(Re)start the delay. Must be called from a running event loop."""
        self.cancel()
        self._task = asyncio.create_task(self._run_after_delay())
        logger.debug(
            f"Scheduled {self._name} in {self.delay:.3f}s",
            extra={
                'event_type': 'flush_scheduled',
                'flush_name': self._name,
                'delay': self.delay,
                'timestamp': time.time()
            }
        )

    async def _run_after_delay(self) -> None:
        await asyncio.sleep(self.delay)
        # Detach before flushing so a schedule() issued by the flush is not cancelled
        self._task = None
        task = asyncio.current_task()
        self._inflight.add(task)
        try:
            await self._safe_flush()
        finally:
            self._inflight.discard(task)

    async def _safe_flush(self) -> None:
        try:
            await self._flush()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"{self._name} failed: {e}",
                extra={
                    'event_type': 'flush_failed',
                    'flush_name': self._name,
                    'error': str(e),
                    'timestamp': time.time()
                }
            )

    async def flush_now(self) -> None:
        """Drop the pending delay and flush immediately."""
        self.cancel()
        await self._safe_flush()

    def cancel(self) -> bool:
        """Drop the pending run. Returns True if one was pending."""
        task = self._task
        self._task = None
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug(f"Cancelled pending {self._name}")
        return True

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def flushing(self) -> bool:
        return any(not task.done() for task in self._inflight)

    def _other_inflight(self) -> Set[asyncio.Task]:
        current = asyncio.current_task()
        return {task for task in self._inflight if not task.done() and task is not current}

    async def wait_idle(self) -> None:
        """Wait for delayed runs that are already flushing to finish."""
        running = self._other_inflight()
        if running:
            await asyncio.wait(running)

    def abandon(self) -> bool:
        """
        Drop the pending run and cancel flushes that are already under way.

        Returns:
            True if anything was dropped
        """
        dropped = self.cancel()
        if not self._inflight:
            return dropped
        for task in self._other_inflight():
            task.cancel()
            logger.debug(f"Abandoned running {self._name}")
            dropped = True
        return dropped
