"""
Unit tests for the coalescing flush used by auto-save.
"""
import asyncio
import unittest
from unittest.mock import AsyncMock

from assessment_session.debounce import CoalescingFlush
from tests.test_fixtures import AsyncTestHelpers


class TestCoalescingFlush(unittest.IsolatedAsyncioTestCase):

    async def test_burst_coalesces_into_one_flush(self):
        flush = AsyncMock()
        debouncer = CoalescingFlush(0.02, flush)
        for _ in range(3):
            debouncer.schedule()
            await asyncio.sleep(0.001)
        self.assertTrue(await AsyncTestHelpers.wait_for(lambda: flush.await_count > 0))
        await asyncio.sleep(0.05)
        flush.assert_awaited_once()
        self.assertFalse(debouncer.pending)

    async def test_cancel_drops_pending_flush(self):
        flush = AsyncMock()
        debouncer = CoalescingFlush(0.01, flush)
        debouncer.schedule()
        self.assertTrue(debouncer.cancel())
        await asyncio.sleep(0.03)
        flush.assert_not_awaited()
        self.assertFalse(debouncer.cancel())

    async def test_flush_now_skips_delay(self):
        flush = AsyncMock()
        debouncer = CoalescingFlush(10, flush)
        debouncer.schedule()
        await debouncer.flush_now()
        flush.assert_awaited_once()
        self.assertFalse(debouncer.pending)

    async def test_flush_errors_are_logged(self):
        flush = AsyncMock(side_effect=RuntimeError("offline"))
        debouncer = CoalescingFlush(0, flush, name="save")
        with self.assertLogs('assessment_session.debounce', level='ERROR'):
            await debouncer.flush_now()

    async def test_cancel_does_not_stop_running_flush(self):
        release = asyncio.Event()
        finished = []

        async def flush():
            await release.wait()
            finished.append(True)

        debouncer = CoalescingFlush(0.001, flush)
        debouncer.schedule()
        self.assertTrue(await AsyncTestHelpers.wait_for(lambda: debouncer.flushing))
        self.assertFalse(debouncer.cancel())

        waiter = asyncio.create_task(debouncer.wait_idle())
        await asyncio.sleep(0.01)
        self.assertFalse(waiter.done())
        release.set()
        await waiter
        self.assertEqual(finished, [True])
        self.assertFalse(debouncer.flushing)

    async def test_wait_idle_returns_when_nothing_runs(self):
        debouncer = CoalescingFlush(10, AsyncMock())
        await asyncio.wait_for(debouncer.wait_idle(), timeout=1)

    async def test_abandon_cancels_running_flush(self):
        release = asyncio.Event()
        finished = []

        async def flush():
            await release.wait()
            finished.append(True)

        debouncer = CoalescingFlush(0.001, flush)
        debouncer.schedule()
        self.assertTrue(await AsyncTestHelpers.wait_for(lambda: debouncer.flushing))
        self.assertTrue(debouncer.abandon())
        release.set()
        await asyncio.sleep(0.01)
        self.assertEqual(finished, [])
        self.assertFalse(debouncer.flushing)
        self.assertFalse(debouncer.abandon())

    def test_negative_delay_rejected(self):
        with self.assertRaises(ValueError):
            CoalescingFlush(-1, AsyncMock())


if __name__ == '__main__':
    unittest.main()
