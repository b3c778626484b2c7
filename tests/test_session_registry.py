"""
Unit tests for SessionRegistry.
"""
import asyncio
import logging
import unittest

from assessment_session.session_controller import SessionState
from assessment_session.session_registry import SessionConflictError, SessionNotFoundError, SessionRegistry
from tests.test_fixtures import FakeGateway, TestFixtures


class TestSessionRegistry(unittest.IsolatedAsyncioTestCase):
    """Test cases for per-learner session bookkeeping."""

    async def asyncSetUp(self):
        logging.disable(logging.CRITICAL)
        self.gateway = FakeGateway()
        self.registry = SessionRegistry(self.gateway, TestFixtures.create_fast_settings)

    async def asyncTearDown(self):
        await self.registry.shutdown()
        logging.disable(logging.NOTSET)

    async def test_create_session_uses_provided_settings(self):
        controller = self.registry.create_session("learner", "test_assessment")
        self.assertEqual(controller.settings.autosave_delay, 0.05)
        self.assertIs(self.registry.get_session("learner"), controller)
        self.assertTrue(self.registry.has_active_session("learner"))

    async def test_unfinished_session_conflicts(self):
        controller = self.registry.create_session("learner", "test_assessment")
        await controller.load()
        with self.assertRaises(SessionConflictError):
            self.registry.create_session("learner", "test_assessment")

    async def test_finished_session_is_replaced(self):
        self.gateway.fail_fetch = True
        first = self.registry.create_session("learner", "test_assessment")
        self.assertFalse(await first.load())
        self.assertEqual(first.status, SessionState.ERROR)

        self.gateway.fail_fetch = False
        second = self.registry.create_session("learner", "test_assessment")
        self.assertIsNot(first, second)
        self.assertIs(self.registry.require_session("learner"), second)

    async def test_require_session_missing(self):
        with self.assertRaises(SessionNotFoundError):
            self.registry.require_session("nobody")

    async def test_end_session(self):
        self.registry.create_session("learner", "test_assessment")
        self.assertTrue(await self.registry.end_session("learner"))
        self.assertIsNone(self.registry.get_session("learner"))
        self.assertFalse(await self.registry.end_session("learner"))

    async def test_cleanup_keeps_active_sessions(self):
        active = self.registry.create_session("active", "test_assessment")
        await active.load()
        active.begin()

        exited = self.registry.create_session("exited", "test_assessment")
        await exited.load()
        self.assertTrue(exited.request_exit())

        removed = await self.registry.cleanup_finished_sessions()
        self.assertEqual(removed, 1)
        self.assertEqual(self.registry.active_learners(), ["active"])
        self.assertIsNone(self.registry.get_session("exited"))

    async def test_cleanup_waits_for_submitted_callback(self):
        release = asyncio.Event()
        entered = asyncio.Event()

        async def on_submitted(controller):
            entered.set()
            await release.wait()

        controller = self.registry.create_session("learner", "test_assessment", on_submitted=on_submitted)
        await controller.load()
        controller.begin()
        submit_task = asyncio.create_task(controller.submit())
        await entered.wait()

        self.assertTrue(controller.is_notifying)
        self.assertEqual(await self.registry.cleanup_finished_sessions(), 0)
        self.assertIs(self.registry.get_session("learner"), controller)

        release.set()
        self.assertTrue(await submit_task)
        self.assertFalse(controller.is_notifying)
        self.assertEqual(await self.registry.cleanup_finished_sessions(), 1)

    async def test_active_session_progress(self):
        controller = self.registry.create_session("learner", "test_assessment")
        await controller.load()
        controller.begin()
        progress = self.registry.get_all_active_sessions()["learner"]
        self.assertEqual(progress['state'], SessionState.IN_PROGRESS.value)
        self.assertEqual(progress['total_questions'], 4)


if __name__ == '__main__':
    unittest.main()
