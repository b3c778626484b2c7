"""
Registry of active assessment sessions, one per learner.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from .gateway import PersistenceGateway
from .models import SessionSettings
from .session_controller import SessionController


class SessionRegistryError(Exception):
    """Base exception for session registry errors."""
    pass


class SessionConflictError(SessionRegistryError):
    """Raised when a learner already has an active session."""
    pass


class SessionNotFoundError(SessionRegistryError):
    """Raised when a learner has no active session."""
    pass


class SessionRegistry:
    """
    Tracks the active SessionController of each learner.

    Finished sessions (submitted, failed to load, or exited) stay registered
    until they are replaced or cleaned up so their results can still be shown.
    """

    def __init__(self, gateway: PersistenceGateway, settings_provider: Callable[[], SessionSettings] = SessionSettings):
        """
        Initialize SessionRegistry.

        Args:
            gateway: Persistence backend shared by all sessions
            settings_provider: Returns the settings for a new session
        """
        self.logger = logging.getLogger(__name__)
        self._gateway = gateway
        self._settings_provider = settings_provider
        self._sessions: Dict[str, SessionController] = {}

    def create_session(self, learner_id: str, assessment_id: str, **controller_kwargs: Any) -> SessionController:
        """
        Register a new session for a learner.

        A finished session is replaced; an unfinished one is a conflict.

        Raises:
            SessionConflictError: If the learner is still taking an assessment
        """
        if self.has_active_session(learner_id):
            current = self._sessions[learner_id]
            raise SessionConflictError(
                f"Learner {learner_id} is already taking '{current.assessment_id}'"
            )

        controller = SessionController(
            self._gateway,
            assessment_id,
            learner_id,
            settings=self._settings_provider(),
            **controller_kwargs
        )
        self._sessions[learner_id] = controller
        self.logger.info(f"Created session {controller.session_id} for learner {learner_id} on '{assessment_id}'")
        return controller

    def get_session(self, learner_id: str) -> Optional[SessionController]:
        return self._sessions.get(learner_id)

    def require_session(self, learner_id: str) -> SessionController:
        """
        Raises:
            SessionNotFoundError: If the learner has no session
        """
        controller = self._sessions.get(learner_id)
        if controller is None:
            raise SessionNotFoundError(f"No session for learner {learner_id}")
        return controller

    def has_active_session(self, learner_id: str) -> bool:
        controller = self._sessions.get(learner_id)
        return controller is not None and not controller.is_finished

    async def end_session(self, learner_id: str) -> bool:
        """Dispose of and forget a learner's session. Returns False if there was none."""
        controller = self._sessions.pop(learner_id, None)
        if controller is None:
            return False
        await controller.dispose()
        self.logger.info(f"Ended session {controller.session_id} for learner {learner_id}")
        return True

    async def cleanup_finished_sessions(self) -> int:
        """
        Drop every finished session whose submitted callback has completed.

        Returns:
            Number of sessions removed
        """
        finished = [
            learner_id for learner_id, controller in self._sessions.items()
            if controller.is_finished and not controller.is_notifying
        ]
        for learner_id in finished:
            await self.end_session(learner_id)
        if finished:
            self.logger.info(f"Cleaned up {len(finished)} finished sessions")
        return len(finished)

    async def shutdown(self) -> None:
        for learner_id in list(self._sessions):
            await self.end_session(learner_id)

    def get_all_active_sessions(self) -> Dict[str, Dict[str, Any]]:
        return {
            learner_id: controller.get_session_progress()
            for learner_id, controller in self._sessions.items()
            if not controller.is_finished
        }

    def active_learners(self) -> List[str]:
        return list(self.get_all_active_sessions())
