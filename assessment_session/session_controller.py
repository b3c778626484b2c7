"""
Session controller driving a single learner through an assessment.

State machine::

    LOADING -> READY -> IN_PROGRESS -> SUBMITTING -> SUBMITTED
       |                    |
       v                    v
     ERROR                EXITED

A pending submit confirmation and the exit warning are flags layered on
IN_PROGRESS. Manual and timeout submissions share the single guarded
``submit`` path.
"""
import asyncio
import inspect
import logging
import random
import time
import uuid
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from . import scoring
from .debounce import CoalescingFlush
from .gateway import GatewayError, PersistenceGateway
from .models import (
    Answer,
    Assessment,
    AssessmentResult,
    Attempt,
    MultipleChoiceData,
    Question,
    QuestionType,
    SessionSettings,
    SubmitConfirmation,
    SubmitTrigger,
    build_answer,
)
from .response_store import ResponseStore
from .session_clock import SessionClock


class SessionState(Enum):
    """Enumeration of session states."""
    LOADING = "loading"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    ERROR = "error"
    EXITED = "exited"


class SessionControllerError(Exception):
    """Base exception for session controller errors."""
    pass


class LoadFailure(SessionControllerError):
    """The assessment, its questions or the attempt could not be loaded."""
    pass


class SubmitFailure(SessionControllerError):
    """The attempt could not be submitted. The submission may be retried."""
    pass


class InvalidSessionStateError(SessionControllerError):
    """Raised when an operation requires a state the session is not in."""
    pass


class SessionController:
    """
    Orchestrates loading, navigation, answer capture, auto-save and submission.

    The gateway is injected so the controller runs against any persistence
    backend. Answers go through ``answer`` only; the submission path is the
    only reader of the full response snapshot.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        assessment_id: str,
        learner_id: str,
        settings: Optional[SessionSettings] = None,
        rng: Optional[random.Random] = None,
        now: Callable[[], datetime] = datetime.now,
        on_submitted: Optional[Callable[["SessionController"], Any]] = None,
        on_tick: Optional[Callable[[int], Any]] = None,
        session_id: Optional[str] = None
    ):
        """
        Initialize SessionController.

        Args:
            gateway: Persistence backend
            assessment_id: Assessment to take
            learner_id: Learner taking it
            settings: Auto-save and timer settings
            rng: Random source used when the assessment shuffles
            now: Clock used to compute time spent
            on_submitted: Called with the controller after a successful submission
            on_tick: Called with the remaining seconds on every clock tick
            session_id: Identifier used in log records
        """
        self.logger = logging.getLogger(__name__)
        self.session_id = session_id or uuid.uuid4().hex[:8]
        self.assessment_id = assessment_id
        self.learner_id = learner_id
        self.settings = settings or SessionSettings()

        self._gateway = gateway
        self._rng = rng or random.Random()
        self._now = now
        self._on_submitted = on_submitted
        self._on_tick = on_tick

        self._state = SessionState.LOADING
        self._assessment: Optional[Assessment] = None
        self._questions: List[Question] = []
        self._questions_by_id: Dict[str, Question] = {}
        self._attempt: Optional[Attempt] = None
        self._current_index = 0
        self._store = ResponseStore()
        self._autosave = CoalescingFlush(self.settings.autosave_delay, self._flush_responses, name="auto-save")
        self._clock: Optional[SessionClock] = None
        self._load_task: Optional[asyncio.Task] = None

        self._submit_in_flight = False
        self._notifying = False
        self._pending_confirmation: Optional[SubmitConfirmation] = None
        self._exit_warning = False
        self._result: Optional[AssessmentResult] = None
        self._error: Optional[SessionControllerError] = None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> bool:
        """
        Fetch the assessment and start (or resume) the attempt.

        Concurrent calls share a single load, so the attempt is started once.

        Returns:
            True if the session is ready, False if loading failed
        """
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(self._load())
        return await self._load_task

    async def _load(self) -> bool:
        try:
            assessment = await self._gateway.fetch_assessment(self.assessment_id)
            questions = list(await self._gateway.fetch_questions(self.assessment_id))
            if not questions:
                raise LoadFailure(f"Assessment '{self.assessment_id}' has no questions")

            if assessment.shuffle_questions:
                self._rng.shuffle(questions)
            if assessment.randomize_answers:
                questions = [self._shuffle_options(question) for question in questions]

            attempt = await self._gateway.start_attempt(self.assessment_id, self.learner_id)
            saved = await self._gateway.fetch_responses(attempt.id)

        except (GatewayError, LoadFailure) as e:
            self._error = e if isinstance(e, LoadFailure) else LoadFailure(str(e))
            self._log_event(logging.ERROR, 'session_load_failed', f"Failed to load assessment {self.assessment_id}: {e}")
            self._transition(SessionState.ERROR)
            return False

        self._assessment = replace(assessment, questions=tuple(questions))
        self._questions = questions
        self._questions_by_id = {question.id: question for question in questions}
        self._attempt = attempt
        self._store.load(answer for answer in saved.values() if answer.question_id in self._questions_by_id)

        if self._assessment.is_timed:
            self._clock = SessionClock(
                session_id=self.session_id,
                tick_interval=self.settings.tick_interval,
                warning_threshold=self.settings.warning_threshold,
                on_tick=self._on_tick
            )

        self._transition(SessionState.READY)
        self._log_event(
            logging.INFO, 'session_loaded',
            f"Loaded assessment {self.assessment_id} ({len(questions)} questions, "
            f"attempt #{attempt.attempt_number}, {len(saved)} saved responses)"
        )
        return True

    def _shuffle_options(self, question: Question) -> Question:
        if question.type != QuestionType.MULTIPLE_CHOICE:
            return question
        options = list(question.data.options)
        self._rng.shuffle(options)
        return replace(question, data=MultipleChoiceData(options=tuple(options)))

    def begin(self) -> bool:
        """Show the first question and start the clock for timed assessments."""
        if self._state != SessionState.READY:
            self.logger.debug(f"Session {self.session_id}: begin ignored in state {self._state.value}")
            return False

        self._current_index = 0
        if self._clock is not None:
            self._clock.start(self._assessment.time_limit_seconds, self._on_clock_expire)
        self._transition(SessionState.IN_PROGRESS)
        return True

    # ------------------------------------------------------------------
    # Navigation and answers
    # ------------------------------------------------------------------

    def navigate(self, index: int) -> bool:
        if self._state != SessionState.IN_PROGRESS:
            self.logger.debug(f"Session {self.session_id}: navigate ignored in state {self._state.value}")
            return False
        if not 0 <= index < len(self._questions):
            self.logger.debug(f"Session {self.session_id}: question index {index} out of range")
            return False
        self._current_index = index
        return True

    def next_question(self) -> bool:
        return self.navigate(self._current_index + 1)

    def previous_question(self) -> bool:
        return self.navigate(self._current_index - 1)

    def ensure_in_progress(self) -> None:
        """
        Raises:
            InvalidSessionStateError: If the learner cannot currently answer
        """
        if self._state != SessionState.IN_PROGRESS:
            raise InvalidSessionStateError(
                f"Session {self.session_id} is {self._state.value}, not in progress"
            )

    def answer(self, question_id: str, value: Any) -> bool:
        """
        Record an answer and schedule an auto-save.

        Args:
            question_id: Question being answered
            value: An ``Answer`` or raw input accepted by ``build_answer``

        Returns:
            True if the answer was recorded

        Raises:
            ValueError: If the input is not valid for the question type
        """
        if self._state != SessionState.IN_PROGRESS:
            self.logger.debug(f"Session {self.session_id}: answer to {question_id} ignored in state {self._state.value}")
            return False

        question = self._questions_by_id.get(question_id)
        if question is None:
            self.logger.warning(f"Session {self.session_id}: answer for unknown question {question_id}")
            return False

        self._store.set(question_id, build_answer(question, value))
        self._autosave.schedule()
        return True

    def answer_current(self, value: Any) -> bool:
        question = self.current_question
        if question is None:
            return False
        return self.answer(question.id, value)

    async def _flush_responses(self) -> None:
        """Save every unconfirmed answer. Failures stay dirty until the next edit."""
        if self._attempt is None:
            return
        for question_id, answer, version in self._store.dirty_entries():
            try:
                await self._gateway.save_response(self._attempt.id, answer)
            except GatewayError as e:
                self._log_event(
                    logging.WARNING, 'response_save_failed',
                    f"Session {self.session_id}: failed to save response to {question_id}: {e}"
                )
                continue
            self._store.mark_saved(question_id, version)

    async def save_now(self) -> None:
        """Flush pending answers without waiting for the debounce delay."""
        await self._autosave.flush_now()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def request_submit(self) -> Optional[SubmitConfirmation]:
        """
        Start a manual submission.

        When questions are unanswered and confirmation is enabled, the
        submission is held and the confirmation is returned. Otherwise the
        attempt is submitted right away and None is returned.
        """
        if self._state != SessionState.IN_PROGRESS:
            self.logger.debug(f"Session {self.session_id}: submit request ignored in state {self._state.value}")
            return None

        confirmation = SubmitConfirmation(unanswered=self.unanswered_count, total=self.total_questions)
        if self.settings.confirm_unanswered and confirmation.has_unanswered:
            self._pending_confirmation = confirmation
            self.logger.info(f"Session {self.session_id}: confirming submit with {confirmation.unanswered} unanswered")
            return confirmation

        await self.submit(SubmitTrigger.MANUAL)
        return None

    async def confirm_submit(self) -> bool:
        return await self.submit(SubmitTrigger.MANUAL)

    def cancel_submit(self) -> None:
        self._pending_confirmation = None

    async def submit(self, trigger: SubmitTrigger = SubmitTrigger.MANUAL) -> bool:
        """
        Submit the attempt. The only path to SUBMITTED.

        A call while a submission is in flight, or once submitted, does
        nothing. A failed submission leaves the session in SUBMITTING with
        ``error`` set so it can be retried.

        Returns:
            True if this call submitted the attempt
        """
        if self._submit_in_flight:
            self.logger.debug(f"Session {self.session_id}: {trigger.value} submit ignored, submission in flight")
            return False
        if self._state not in (SessionState.IN_PROGRESS, SessionState.SUBMITTING):
            self.logger.debug(f"Session {self.session_id}: {trigger.value} submit ignored in state {self._state.value}")
            return False

        self._submit_in_flight = True
        self._pending_confirmation = None
        self._exit_warning = False
        self._error = None
        self._transition(SessionState.SUBMITTING)

        # The snapshot below carries everything the pending auto-save would have sent.
        # A save already past its delay finishes first so nothing lands after submission.
        self._autosave.cancel()
        await self._autosave.wait_idle()
        answers = dict(self._store.view())
        time_spent = self._time_spent()

        try:
            attempt = await self._gateway.submit_attempt(self._attempt.id, list(answers.values()), time_spent)
        except GatewayError as e:
            self._error = SubmitFailure(str(e))
            self._log_event(logging.ERROR, 'session_submit_failed', f"Session {self.session_id}: submit failed: {e}")
            return False
        finally:
            self._submit_in_flight = False

        self._attempt = attempt
        if self._clock is not None:
            self._clock.stop()
        self._result = self._build_result(attempt, answers, time_spent, trigger)
        self._transition(SessionState.SUBMITTED)
        self._log_event(
            logging.INFO, 'session_submitted',
            f"Session {self.session_id}: attempt {attempt.id} submitted ({trigger.value}, {time_spent}s)"
        )

        await self._notify_submitted()
        return True

    def _build_result(
        self,
        attempt: Attempt,
        answers: Dict[str, Answer],
        time_spent: int,
        trigger: SubmitTrigger
    ) -> AssessmentResult:
        if not self._assessment.self_graded:
            return AssessmentResult(attempt.id, time_spent, trigger, answers)

        score_result = scoring.score(self._questions, answers)
        percent = scoring.percentage(score_result.score, score_result.total_points)
        return AssessmentResult(
            attempt_id=attempt.id,
            time_spent_seconds=time_spent,
            trigger=trigger,
            answers=answers,
            score=score_result,
            percentage=percent,
            passed=scoring.passed(percent, self._assessment.passing_score),
        )

    async def _notify_submitted(self) -> None:
        if self._on_submitted is None:
            return
        self._notifying = True
        try:
            result = self._on_submitted(self)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.logger.error(f"Session {self.session_id}: submitted callback failed: {e}")
        finally:
            self._notifying = False

    async def _on_clock_expire(self) -> None:
        self.logger.info(f"Session {self.session_id}: time limit reached, submitting")
        await self.submit(SubmitTrigger.TIMEOUT)

    def _time_spent(self) -> int:
        elapsed = (self._now() - self._attempt.started_at).total_seconds()
        return max(0, int(elapsed))

    # ------------------------------------------------------------------
    # Exit guard
    # ------------------------------------------------------------------

    def request_exit(self) -> bool:
        """
        Leave the session, unless answers are still unsaved.

        Returns:
            True if the session was left, False if the exit warning is now shown
        """
        if self._submit_in_flight:
            self.logger.debug(f"Session {self.session_id}: exit ignored, submission in flight")
            return False
        if self.has_unsaved_changes:
            self._exit_warning = True
            return False
        self._exit()
        return True

    def confirm_exit(self) -> bool:
        """Leave the session and discard any pending auto-save."""
        if self._submit_in_flight:
            self.logger.debug(f"Session {self.session_id}: exit ignored, submission in flight")
            return False
        self._exit()
        return True

    def cancel_exit(self) -> None:
        self._exit_warning = False

    def _exit(self) -> None:
        self._exit_warning = False
        self._pending_confirmation = None
        if self._autosave.abandon():
            self.logger.info(f"Session {self.session_id}: discarded pending auto-save on exit")
        if self._clock is not None:
            self._clock.dispose()
        if self._state != SessionState.SUBMITTED:
            self._transition(SessionState.EXITED)

    async def dispose(self) -> None:
        """Tear down timers and any load still running."""
        self._autosave.abandon()
        if self._clock is not None:
            self._clock.dispose()
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
            await asyncio.gather(self._load_task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Read-only surface
    # ------------------------------------------------------------------

    def _transition(self, to_state: SessionState) -> None:
        if to_state == self._state:
            return
        self._log_event(
            logging.DEBUG, 'session_state_transition',
            f"Session {self.session_id}: {self._state.value} -> {to_state.value}"
        )
        self._state = to_state

    def _log_event(self, level: int, event_type: str, message: str) -> None:
        self.logger.log(
            level,
            message,
            extra={
                'event_type': event_type,
                'session_id': self.session_id,
                'learner_id': self.learner_id,
                'assessment_id': self.assessment_id,
                'timestamp': time.time()
            }
        )

    @property
    def status(self) -> SessionState:
        return self._state

    @property
    def assessment(self) -> Optional[Assessment]:
        return self._assessment

    @property
    def attempt(self) -> Optional[Attempt]:
        return self._attempt

    @property
    def questions(self) -> List[Question]:
        return list(self._questions)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current_question(self) -> Optional[Question]:
        if not self._questions:
            return None
        return self._questions[self._current_index]

    @property
    def is_last_question(self) -> bool:
        return bool(self._questions) and self._current_index == len(self._questions) - 1

    @property
    def answers(self) -> Mapping[str, Answer]:
        return self._store.view()

    def get_answer(self, question_id: str) -> Optional[Answer]:
        return self._store.get(question_id)

    def is_answered(self, question_id: str) -> bool:
        return self._store.is_answered(question_id)

    @property
    def time_remaining(self) -> Optional[int]:
        if self._clock is None:
            return None
        return self._clock.remaining_time if self._clock.duration else self._assessment.time_limit_seconds

    @property
    def is_time_warning(self) -> bool:
        return self._clock is not None and self._clock.is_warning

    @property
    def answered_count(self) -> int:
        return self._store.answered_count()

    @property
    def total_questions(self) -> int:
        return len(self._questions)

    @property
    def unanswered_count(self) -> int:
        return self.total_questions - self.answered_count

    @property
    def progress_percent(self) -> float:
        if not self._questions:
            return 0.0
        return self.answered_count / self.total_questions * 100

    @property
    def has_unsaved_changes(self) -> bool:
        if self._state == SessionState.SUBMITTED:
            return False
        return self._store.has_unsaved_changes

    @property
    def pending_confirmation(self) -> Optional[SubmitConfirmation]:
        return self._pending_confirmation

    @property
    def exit_warning(self) -> bool:
        return self._exit_warning

    @property
    def result(self) -> Optional[AssessmentResult]:
        return self._result

    @property
    def error(self) -> Optional[SessionControllerError]:
        return self._error

    @property
    def is_finished(self) -> bool:
        return self._state in (SessionState.SUBMITTED, SessionState.ERROR, SessionState.EXITED)

    @property
    def is_notifying(self) -> bool:
        """True while the submitted callback is still running."""
        return self._notifying

    def get_session_progress(self) -> Dict[str, Any]:
        """
        Snapshot of the session for status displays.

        Returns:
            Dictionary with progress information
        """
        question = self.current_question
        return {
            'session_id': self.session_id,
            'assessment_id': self.assessment_id,
            'learner_id': self.learner_id,
            'state': self._state.value,
            'current_index': self._current_index,
            'current_question_id': question.id if question else None,
            'total_questions': self.total_questions,
            'answered_count': self.answered_count,
            'unanswered_count': self.unanswered_count,
            'progress_percent': self.progress_percent,
            'time_remaining': self.time_remaining,
            'is_time_warning': self.is_time_warning,
            'has_unsaved_changes': self.has_unsaved_changes,
            'attempt_number': self._attempt.attempt_number if self._attempt else None,
            'error': str(self._error) if self._error else None
        }
