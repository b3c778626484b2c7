"""
Persistence contract the session engine depends on.
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Sequence

from .models import Answer, Assessment, Attempt, Question


class GatewayError(Exception):
    """Base exception for persistence failures."""
    pass


class NotFoundError(GatewayError):
    """Raised when an assessment or attempt does not exist."""
    pass


class AttemptLimitError(GatewayError):
    """Raised when a learner has used up the allowed attempts."""
    pass


class AttemptAlreadySubmittedError(GatewayError):
    """Raised when an attempt is submitted or mutated after submission."""
    pass


class PersistenceGateway(ABC):
    """
    Durable storage for assessments and attempts.

    Implementations signal failure by raising ``GatewayError``.
    """

    @abstractmethod
    async def fetch_assessment(self, assessment_id: str) -> Assessment:
        ...

    @abstractmethod
    async def fetch_questions(self, assessment_id: str) -> List[Question]:
        """Return the questions of an assessment ordered by ``order_index``."""
        ...

    @abstractmethod
    async def start_attempt(self, assessment_id: str, learner_id: str) -> Attempt:
        """
        Start (or return the learner's open) attempt.

        Calling this repeatedly for the same learner and assessment while an
        attempt is in progress returns that attempt.
        """
        ...

    @abstractmethod
    async def save_response(self, attempt_id: str, answer: Answer) -> None:
        ...

    @abstractmethod
    async def fetch_responses(self, attempt_id: str) -> Dict[str, Answer]:
        ...

    @abstractmethod
    async def submit_attempt(self, attempt_id: str, answers: Sequence[Answer], time_spent_seconds: int) -> Attempt:
        """Finalize an attempt. Must only succeed once per attempt."""
        ...

    async def list_assessments(self) -> List[Assessment]:
        return []
