"""
Countdown clock for timed assessment sessions.
"""
import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Any, Callable, Optional

# Set up logger for clock operations
logger = logging.getLogger(__name__)


class ClockState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    EXPIRED = "expired"
    STOPPED = "stopped"


class ClockLifecycleLogger:
    """Structured logging for clock lifecycle events."""

    @staticmethod
    def log_clock_start(session_id: str, duration: int) -> None:
        logger.info(
            f"Clock lifecycle: COUNTDOWN_START - Session {session_id}, Duration {duration}s",
            extra={
                'event_type': 'clock_countdown_start',
                'session_id': session_id,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_clock_update(session_id: str, remaining_time: int, total_duration: int) -> None:
        """Log clock ticks (throttled to avoid spam)."""
        if remaining_time % 60 == 0 or remaining_time <= 5:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100
            logger.debug(
                f"Clock lifecycle: UPDATE - Session {session_id}, Remaining {remaining_time}s ({progress_percent:.1f}% elapsed)",
                extra={
                    'event_type': 'clock_update',
                    'session_id': session_id,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_clock_state_transition(session_id: str, from_state: ClockState, to_state: ClockState, reason: str = None) -> None:
        logger.info(
            f"Clock lifecycle: STATE_TRANSITION - Session {session_id}, {from_state.value} -> {to_state.value}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'clock_state_transition',
                'session_id': session_id,
                'from_state': from_state.value,
                'to_state': to_state.value,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_clock_error(session_id: str, error_type: str, error_message: str, operation: str) -> None:
        logger.error(
            f"Clock lifecycle: ERROR - Session {session_id}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'clock_error',
                'session_id': session_id,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_race_condition_detected(session_id: str, details: str) -> None:
        logger.warning(
            f"Clock lifecycle: RACE_CONDITION - Session {session_id}: {details}",
            extra={
                'event_type': 'clock_race_condition',
                'session_id': session_id,
                'details': details,
                'timestamp': time.time()
            }
        )


def format_time(seconds: int) -> str:
    """Render seconds as m:ss, or h:mm:ss once hours are involved."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


class SessionClock:
    """
    Counts an assessment time limit down once per tick.

    The background task calls ``tick`` every ``tick_interval`` seconds. Each
    tick removes exactly one second; when the remaining time reaches zero the
    clock expires and ``on_expire`` is invoked exactly once.
    """

    DEFAULT_WARNING_THRESHOLD = 300

    def __init__(
        self,
        session_id: str = None,
        tick_interval: float = 1.0,
        warning_threshold: int = DEFAULT_WARNING_THRESHOLD,
        on_tick: Optional[Callable[[int], Any]] = None
    ):
        self._session_id = session_id
        self.tick_interval = tick_interval
        self.warning_threshold = warning_threshold
        self._on_tick = on_tick
        self._on_expire: Optional[Callable[[], Any]] = None
        self._task: Optional[asyncio.Task] = None
        self._state = ClockState.IDLE
        self._duration = 0
        self._remaining_time = 0
        self._expire_fired = False

    def start(self, duration_seconds: int, on_expire: Callable[[], Any]) -> None:
        """
        Start the countdown. Must be called from a running event loop.

        Args:
            duration_seconds: Countdown length in whole seconds
            on_expire: Called once when the countdown reaches zero; may be a
                coroutine function

        Raises:
            RuntimeError: If the clock was already started
            ValueError: If the duration is not positive
        """
        if self._state != ClockState.IDLE:
            raise RuntimeError(f"Clock for session {self._session_id} already started ({self._state.value})")
        if duration_seconds <= 0:
            raise ValueError("Clock duration must be positive")

        self._duration = int(duration_seconds)
        self._remaining_time = self._duration
        self._on_expire = on_expire
        self._transition(ClockState.RUNNING, "start requested")
        ClockLifecycleLogger.log_clock_start(self._session_id, self._duration)
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        try:
            while self._state in (ClockState.RUNNING, ClockState.PAUSED):
                await asyncio.sleep(self.tick_interval)
                if self._state == ClockState.RUNNING:
                    await self.tick()
        except asyncio.CancelledError:
            logger.debug(f"Clock task cancelled for session {self._session_id}")
            raise
        except Exception as e:
            ClockLifecycleLogger.log_clock_error(self._session_id, "countdown_execution_error", str(e), "_run")
            raise

    async def tick(self) -> None:
        """Advance the clock by one second."""
        if self._state != ClockState.RUNNING:
            return

        self._remaining_time = max(0, self._remaining_time - 1)
        ClockLifecycleLogger.log_clock_update(self._session_id, self._remaining_time, self._duration)

        if self._on_tick is not None:
            result = self._on_tick(self._remaining_time)
            if inspect.isawaitable(result):
                await result

        if self._remaining_time == 0:
            self._transition(ClockState.EXPIRED, "time limit reached")
            self._cancel_task()
            await self._fire_expire()

    async def _fire_expire(self) -> None:
        if self._expire_fired:
            ClockLifecycleLogger.log_race_condition_detected(self._session_id, "expiry already fired, ignoring")
            return
        self._expire_fired = True
        if self._on_expire is None:
            return
        try:
            result = self._on_expire()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            ClockLifecycleLogger.log_clock_error(self._session_id, "expire_callback_error", str(e), "on_expire")
            raise

    def pause(self) -> None:
        if self._state == ClockState.RUNNING:
            self._transition(ClockState.PAUSED, "pause requested")

    def resume(self) -> None:
        if self._state == ClockState.PAUSED:
            self._transition(ClockState.RUNNING, "resume requested")

    def stop(self) -> None:
        """Stop ticking. An expired clock stays expired."""
        if self._state in (ClockState.RUNNING, ClockState.PAUSED, ClockState.IDLE):
            self._transition(ClockState.STOPPED, "stop requested")
        self._cancel_task()

    def dispose(self) -> None:
        """Stop the clock and drop its callbacks."""
        self.stop()
        self._on_expire = None
        self._on_tick = None

    def _cancel_task(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        # Never cancel the task we are running in (stop() called from on_expire)
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is current:
            return
        task.cancel()

    def _transition(self, to_state: ClockState, reason: str) -> None:
        ClockLifecycleLogger.log_clock_state_transition(self._session_id, self._state, to_state, reason)
        self._state = to_state

    @property
    def state(self) -> ClockState:
        return self._state

    @property
    def remaining_time(self) -> int:
        return self._remaining_time

    @property
    def duration(self) -> int:
        return self._duration

    @property
    def elapsed(self) -> int:
        return self._duration - self._remaining_time

    @property
    def is_running(self) -> bool:
        return self._state == ClockState.RUNNING

    @property
    def is_expired(self) -> bool:
        return self._state == ClockState.EXPIRED

    @property
    def is_warning(self) -> bool:
        """True once the remaining time is at or below the warning threshold."""
        if self._state == ClockState.IDLE:
            return False
        return self._remaining_time <= self.warning_threshold
