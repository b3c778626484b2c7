"""
Unit tests for SessionController: loading, answering, auto-save, submission and exit.
"""
import asyncio
import random
import unittest
from unittest.mock import AsyncMock, Mock, patch

from assessment_session.models import SubmitTrigger, build_answer
from assessment_session.session_clock import SessionClock
from assessment_session.session_controller import (
    InvalidSessionStateError,
    LoadFailure,
    SessionController,
    SessionState,
    SubmitFailure,
)
from tests.test_fixtures import AsyncTestHelpers, FakeGateway, FixedClock, TestFixtures


class ControllerTestCase(unittest.IsolatedAsyncioTestCase):
    """Base class building a controller over a FakeGateway."""

    def make_controller(self, assessment=None, **kwargs):
        self.gateway = FakeGateway(assessment or TestFixtures.create_assessment())
        self.clock = FixedClock(self.gateway.started_at)
        kwargs.setdefault('settings', TestFixtures.create_fast_settings())
        kwargs.setdefault('now', self.clock)
        self.controller = SessionController(self.gateway, self.gateway.assessment.id, "learner-1", **kwargs)
        return self.controller

    async def start(self, assessment=None, **kwargs):
        controller = self.make_controller(assessment, **kwargs)
        self.assertTrue(await controller.load())
        self.assertTrue(controller.begin())
        return controller

    async def asyncTearDown(self):
        if getattr(self, 'controller', None) is not None:
            await self.controller.dispose()


class TestLoading(ControllerTestCase):

    async def test_load_reaches_ready(self):
        controller = self.make_controller()
        self.assertEqual(controller.status, SessionState.LOADING)
        self.assertTrue(await controller.load())
        self.assertEqual(controller.status, SessionState.READY)
        self.assertEqual(controller.total_questions, 4)
        self.assertIsNone(controller.time_remaining)

    async def test_concurrent_loads_start_one_attempt(self):
        controller = self.make_controller()
        results = await asyncio.gather(controller.load(), controller.load())
        self.assertEqual(results, [True, True])
        self.assertEqual(self.gateway.start_calls, 1)

    async def test_load_failure_sets_error_state(self):
        controller = self.make_controller()
        self.gateway.fail_fetch = True
        self.assertFalse(await controller.load())
        self.assertEqual(controller.status, SessionState.ERROR)
        self.assertIsInstance(controller.error, LoadFailure)
        # Navigation stays safe after a failed load
        self.assertFalse(controller.navigate(0))
        self.assertFalse(controller.begin())
        self.assertIsNone(controller.current_question)

    async def test_assessment_without_questions_fails_to_load(self):
        controller = self.make_controller(TestFixtures.create_assessment(questions=[]))
        self.assertFalse(await controller.load())
        self.assertIsInstance(controller.error, LoadFailure)

    async def test_timed_assessment_initializes_clock(self):
        controller = self.make_controller(TestFixtures.create_assessment(time_limit_minutes=1))
        await controller.load()
        self.assertEqual(controller.time_remaining, 60)

    async def test_begin_stays_ready_when_clock_cannot_start(self):
        controller = self.make_controller(TestFixtures.create_assessment(time_limit_minutes=1))
        await controller.load()
        with patch.object(SessionClock, 'start', side_effect=ValueError("Clock duration must be positive")):
            with self.assertRaises(ValueError):
                controller.begin()
        self.assertEqual(controller.status, SessionState.READY)
        self.assertFalse(controller.answer("q1", "a"))

    async def test_resume_loads_saved_responses(self):
        controller = self.make_controller()
        question = self.gateway.assessment.questions[0]
        self.gateway.saved_responses["q1"] = build_answer(question, "a")
        await controller.load()
        self.assertEqual(controller.answered_count, 1)
        self.assertFalse(controller.has_unsaved_changes)

    async def test_shuffle_questions_and_options(self):
        assessment = TestFixtures.create_assessment(shuffle_questions=True, randomize_answers=True)
        controller = self.make_controller(assessment, rng=random.Random(3))
        await controller.load()
        self.assertCountEqual([q.id for q in controller.questions], ["q1", "q2", "q3", "q4"])
        for question in controller.questions:
            self.assertCountEqual([o.id for o in question.data.options], ["a", "b", "c", "d"])
            self.assertEqual(question.data.correct_option().id, "a")


class TestNavigationAndAnswers(ControllerTestCase):

    async def test_navigation_is_bounds_checked(self):
        controller = await self.start()
        self.assertFalse(controller.previous_question())
        self.assertTrue(controller.navigate(3))
        self.assertTrue(controller.is_last_question)
        self.assertFalse(controller.next_question())
        self.assertFalse(controller.navigate(-1))
        self.assertEqual(controller.current_index, 3)

    async def test_progress_matches_answered_count(self):
        controller = await self.start()
        for index, question in enumerate(controller.questions, start=1):
            controller.navigate(index - 1)
            controller.answer(question.id, "a")
            self.assertEqual(controller.progress_percent, index / 4 * 100)
            self.assertEqual(controller.answered_count, index)

    async def test_unknown_question_rejected(self):
        controller = await self.start()
        self.assertFalse(controller.answer("nope", "a"))
        self.assertEqual(controller.answered_count, 0)

    async def test_clearing_fill_blank_leaves_it_unanswered(self):
        controller = await self.start(TestFixtures.create_assessment(TestFixtures.create_mixed_questions()))
        controller.answer("q4", "tuple")
        self.assertEqual(controller.answered_count, 1)
        controller.answer("q4", "")
        self.assertEqual(controller.answered_count, 0)
        self.assertFalse(controller.is_answered("q4"))

    async def test_invalid_value_raises(self):
        controller = await self.start()
        with self.assertRaises(ValueError):
            controller.answer("q1", "z")

    async def test_answer_before_begin_ignored(self):
        controller = self.make_controller()
        await controller.load()
        self.assertFalse(controller.answer("q1", "a"))
        with self.assertRaises(InvalidSessionStateError):
            controller.ensure_in_progress()

    async def test_answers_view_is_read_only(self):
        controller = await self.start()
        controller.answer("q1", "a")
        with self.assertRaises(TypeError):
            controller.answers["q2"] = controller.answers["q1"]


class TestAutoSave(ControllerTestCase):

    async def test_rapid_edits_coalesce_into_one_save(self):
        controller = await self.start()
        controller.answer("q2", "a")
        controller.answer("q2", "b")
        controller.answer("q2", "c")
        self.assertTrue(await AsyncTestHelpers.wait_for(lambda: not controller.has_unsaved_changes))
        self.assertEqual(len(self.gateway.save_calls), 1)
        self.assertEqual(self.gateway.save_calls[0].answer_data.option_id, "c")

    async def test_failed_save_retried_on_next_edit(self):
        controller = await self.start()
        self.gateway.fail_save = True
        controller.answer("q1", "a")
        self.assertTrue(await AsyncTestHelpers.wait_for(lambda: len(self.gateway.save_calls) == 1))
        await asyncio.sleep(0.1)
        self.assertTrue(controller.has_unsaved_changes)
        self.assertEqual(len(self.gateway.save_calls), 1)

        self.gateway.fail_save = False
        controller.answer("q2", "b")
        self.assertTrue(await AsyncTestHelpers.wait_for(lambda: not controller.has_unsaved_changes))
        self.assertEqual(set(self.gateway.saved_responses), {"q1", "q2"})


class TestSubmission(ControllerTestCase):

    async def test_manual_submit_scores_self_graded(self):
        controller = await self.start()
        controller.answer("q1", "a")
        controller.answer("q2", "b")
        controller.answer("q3", "a")
        self.clock.advance(95)

        self.assertTrue(await controller.submit())
        self.assertEqual(controller.status, SessionState.SUBMITTED)
        result = controller.result
        self.assertEqual(result.score.score, 4)
        self.assertEqual(result.score.total_points, 8)
        self.assertEqual(result.percentage, 50.0)
        self.assertTrue(result.passed)
        self.assertEqual(result.time_spent_seconds, 95)
        self.assertEqual(result.trigger, SubmitTrigger.MANUAL)

    async def test_externally_graded_result_has_no_score(self):
        controller = await self.start(TestFixtures.create_assessment(self_graded=False))
        await controller.submit()
        self.assertEqual(controller.status, SessionState.SUBMITTED)
        self.assertFalse(controller.result.is_scored)

    async def test_passing_score_applied(self):
        controller = await self.start(TestFixtures.create_assessment(passing_score=75))
        controller.answer("q1", "a")
        await controller.submit()
        self.assertFalse(controller.result.passed)

    async def test_double_submit_calls_gateway_once(self):
        controller = await self.start()
        self.gateway.submit_delay = 0.01
        results = await asyncio.gather(controller.submit(SubmitTrigger.MANUAL), controller.submit(SubmitTrigger.TIMEOUT))
        self.assertEqual(sorted(results), [False, True])
        self.assertEqual(len(self.gateway.submit_calls), 1)
        self.assertFalse(await controller.submit())
        self.assertEqual(len(self.gateway.submit_calls), 1)

    async def test_submit_includes_unsaved_answers(self):
        controller = await self.start(settings=TestFixtures.create_fast_settings(autosave_delay=30))
        controller.answer("q1", "a")
        controller.answer("q4", "b")
        await controller.submit()
        payload = {answer.question_id: answer for answer in self.gateway.submit_calls[0]}
        self.assertEqual(set(payload), {"q1", "q4"})
        self.assertEqual(self.gateway.save_calls, [])
        self.assertFalse(controller.has_unsaved_changes)

    async def test_failed_submit_allows_retry(self):
        controller = await self.start()
        controller.answer("q1", "a")
        self.gateway.fail_submit = True
        self.assertFalse(await controller.submit())
        self.assertEqual(controller.status, SessionState.SUBMITTING)
        self.assertIsInstance(controller.error, SubmitFailure)
        self.assertIsNone(controller.result)
        # Answers are frozen while the submission is pending
        self.assertFalse(controller.answer("q2", "a"))

        self.gateway.fail_submit = False
        self.assertTrue(await controller.submit())
        self.assertEqual(controller.status, SessionState.SUBMITTED)
        self.assertIsNone(controller.error)
        self.assertEqual(len(self.gateway.submit_calls), 2)

    async def test_answer_after_submit_ignored(self):
        controller = await self.start()
        await controller.submit()
        self.assertFalse(controller.answer("q1", "a"))
        self.assertFalse(controller.navigate(1))

    async def test_on_submitted_callback(self):
        callback = AsyncMock()
        controller = await self.start(on_submitted=callback)
        await controller.submit()
        callback.assert_awaited_once_with(controller)

    async def test_on_submitted_errors_do_not_undo_submission(self):
        controller = await self.start(on_submitted=Mock(side_effect=RuntimeError("render failed")))
        self.assertTrue(await controller.submit())
        self.assertEqual(controller.status, SessionState.SUBMITTED)


class TestTimeout(ControllerTestCase):

    async def test_time_limit_auto_submits(self):
        controller = await self.start(TestFixtures.create_assessment(time_limit_minutes=1))
        self.assertTrue(await AsyncTestHelpers.wait_for(lambda: controller.status == SessionState.SUBMITTED, timeout=5.0))
        self.assertEqual(len(self.gateway.submit_calls), 1)
        self.assertEqual(controller.result.trigger, SubmitTrigger.TIMEOUT)
        self.assertEqual(controller.time_remaining, 0)

    async def test_timeout_bypasses_pending_confirmation(self):
        assessment = TestFixtures.create_assessment(time_limit_minutes=1)
        controller = await self.start(assessment, settings=TestFixtures.create_fast_settings(tick_interval=3600))
        confirmation = await controller.request_submit()
        self.assertIsNotNone(confirmation)

        for _ in range(60):
            await controller._clock.tick()

        self.assertEqual(controller.status, SessionState.SUBMITTED)
        self.assertIsNone(controller.pending_confirmation)
        self.assertEqual(len(self.gateway.submit_calls), 1)

    async def test_timeout_carries_last_edit(self):
        assessment = TestFixtures.create_assessment(time_limit_minutes=1)
        controller = await self.start(assessment, settings=TestFixtures.create_fast_settings(
            tick_interval=3600, autosave_delay=30))
        for _ in range(59):
            await controller._clock.tick()
        controller.answer("q3", "a")
        await controller._clock.tick()
        self.assertEqual([a.question_id for a in self.gateway.submit_calls[0]], ["q3"])
        self.assertEqual(controller.result.score.score, 2)

    async def test_timeout_retries_after_failed_manual_submit(self):
        assessment = TestFixtures.create_assessment(time_limit_minutes=1)
        controller = await self.start(assessment, settings=TestFixtures.create_fast_settings(tick_interval=3600))
        self.gateway.fail_submit = True
        await controller.submit()
        self.assertEqual(controller.status, SessionState.SUBMITTING)

        self.gateway.fail_submit = False
        for _ in range(60):
            await controller._clock.tick()
        self.assertEqual(controller.status, SessionState.SUBMITTED)
        self.assertEqual(controller.result.trigger, SubmitTrigger.TIMEOUT)


class TestSubmitConfirmation(ControllerTestCase):

    async def start_with_two_unanswered(self):
        controller = await self.start(TestFixtures.create_assessment(TestFixtures.create_mixed_questions()))
        controller.answer("q1", "a")
        controller.answer("q2", "false")
        controller.answer("q3", "list")
        controller.navigate(4)
        return controller

    async def test_confirmation_lists_unanswered(self):
        controller = await self.start_with_two_unanswered()
        confirmation = await controller.request_submit()
        self.assertEqual(confirmation.unanswered, 2)
        self.assertEqual(confirmation.total, 5)
        self.assertIs(controller.pending_confirmation, confirmation)
        self.assertEqual(self.gateway.submit_calls, [])

    async def test_cancel_keeps_state(self):
        controller = await self.start_with_two_unanswered()
        await controller.request_submit()
        controller.cancel_submit()
        self.assertIsNone(controller.pending_confirmation)
        self.assertEqual(controller.status, SessionState.IN_PROGRESS)
        self.assertEqual(controller.answered_count, 3)
        self.assertEqual(controller.current_index, 4)

    async def test_confirm_submits(self):
        controller = await self.start_with_two_unanswered()
        await controller.request_submit()
        self.assertTrue(await controller.confirm_submit())
        self.assertEqual(controller.status, SessionState.SUBMITTED)
        self.assertEqual(len(self.gateway.submit_calls), 1)

    async def test_all_answered_submits_directly(self):
        controller = await self.start()
        for question in controller.questions:
            controller.answer(question.id, "a")
        self.assertIsNone(await controller.request_submit())
        self.assertEqual(controller.status, SessionState.SUBMITTED)

    async def test_confirmation_can_be_disabled(self):
        controller = await self.start(settings=TestFixtures.create_fast_settings(confirm_unanswered=False))
        self.assertIsNone(await controller.request_submit())
        self.assertEqual(controller.status, SessionState.SUBMITTED)


class TestExitGuard(ControllerTestCase):

    async def test_exit_without_changes(self):
        controller = await self.start()
        self.assertTrue(controller.request_exit())
        self.assertEqual(controller.status, SessionState.EXITED)

    async def test_unsaved_changes_raise_warning(self):
        controller = await self.start(settings=TestFixtures.create_fast_settings(autosave_delay=30))
        controller.answer("q1", "a")
        self.assertFalse(controller.request_exit())
        self.assertTrue(controller.exit_warning)
        self.assertEqual(controller.status, SessionState.IN_PROGRESS)

        controller.cancel_exit()
        self.assertFalse(controller.exit_warning)
        self.assertEqual(controller.answered_count, 1)

    async def test_confirmed_exit_discards_pending_save(self):
        controller = await self.start(settings=TestFixtures.create_fast_settings(autosave_delay=0.02))
        controller.answer("q1", "a")
        self.assertTrue(controller.confirm_exit())
        await asyncio.sleep(0.05)
        self.assertEqual(self.gateway.save_calls, [])
        self.assertEqual(controller.status, SessionState.EXITED)

    async def test_exit_stops_clock(self):
        controller = await self.start(TestFixtures.create_assessment(time_limit_minutes=1),
                                      settings=TestFixtures.create_fast_settings(tick_interval=0.01))
        controller.confirm_exit()
        await asyncio.sleep(0.05)
        self.assertEqual(self.gateway.submit_calls, [])

    async def test_session_progress_snapshot(self):
        controller = await self.start()
        controller.answer("q1", "a")
        progress = controller.get_session_progress()
        self.assertEqual(progress['state'], 'in_progress')
        self.assertEqual(progress['answered_count'], 1)
        self.assertEqual(progress['unanswered_count'], 3)
        self.assertEqual(progress['progress_percent'], 25.0)


class BlockingSaveGateway(FakeGateway):
    """Gateway whose saves wait on ``release`` and which records call order."""

    def __init__(self, assessment=None):
        super().__init__(assessment)
        self.release = asyncio.Event()
        self.calls = []

    async def save_response(self, attempt_id, answer):
        self.calls.append('save_start')
        await self.release.wait()
        await super().save_response(attempt_id, answer)
        self.calls.append('save_done')

    async def submit_attempt(self, attempt_id, answers, time_spent_seconds):
        self.calls.append('submit')
        return await super().submit_attempt(attempt_id, answers, time_spent_seconds)


class TestSaveInFlight(ControllerTestCase):

    async def start_with_save_in_flight(self):
        self.gateway = BlockingSaveGateway(TestFixtures.create_assessment())
        self.controller = SessionController(
            self.gateway, self.gateway.assessment.id, "learner-1",
            settings=TestFixtures.create_fast_settings(autosave_delay=0.01),
            now=FixedClock(self.gateway.started_at),
        )
        self.assertTrue(await self.controller.load())
        self.assertTrue(self.controller.begin())
        self.controller.answer("q1", "a")
        self.assertTrue(await AsyncTestHelpers.wait_for(lambda: self.gateway.calls == ['save_start']))
        return self.controller

    async def test_submit_waits_for_running_save(self):
        controller = await self.start_with_save_in_flight()
        submit_task = asyncio.create_task(controller.submit())
        await asyncio.sleep(0.02)
        self.assertEqual(self.gateway.calls, ['save_start'])

        self.gateway.release.set()
        self.assertTrue(await submit_task)
        self.assertEqual(self.gateway.calls, ['save_start', 'save_done', 'submit'])
        self.assertEqual(controller.status, SessionState.SUBMITTED)
        self.assertEqual(controller.result.answers["q1"].answer_data.option_id, "a")

    async def test_confirmed_exit_cancels_running_save(self):
        controller = await self.start_with_save_in_flight()
        self.assertTrue(controller.confirm_exit())
        self.gateway.release.set()
        await asyncio.sleep(0.02)
        self.assertEqual(self.gateway.calls, ['save_start'])
        self.assertEqual(self.gateway.saved_responses, {})
        self.assertEqual(controller.status, SessionState.EXITED)


if __name__ == '__main__':
    unittest.main()
