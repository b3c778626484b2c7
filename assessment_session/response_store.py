"""
In-session answer storage with dirty tracking.
"""
import logging
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .models import Answer


class ResponseStore:
    """
    Holds what the learner has entered so far, keyed by question id.

    Each ``set`` bumps a per-question version and marks the question dirty
    until a save of that exact version is confirmed with ``mark_saved``.
    The store knows nothing about scoring or persistence.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._answers: Dict[str, Answer] = {}
        self._versions: Dict[str, int] = {}
        self._saved_versions: Dict[str, int] = {}

    def set(self, question_id: str, answer: Answer) -> int:
        """
        Store an answer and mark it dirty.

        Returns:
            The new version number for this question
        """
        if answer.question_id != question_id:
            raise ValueError(f"Answer for {answer.question_id} stored under {question_id}")
        self._answers[question_id] = answer
        version = self._versions.get(question_id, 0) + 1
        self._versions[question_id] = version
        return version

    def get(self, question_id: str) -> Optional[Answer]:
        return self._answers.get(question_id)

    def is_answered(self, question_id: str) -> bool:
        answer = self._answers.get(question_id)
        return answer is not None and not answer.is_empty

    def answered_count(self) -> int:
        return sum(1 for answer in self._answers.values() if not answer.is_empty)

    def entries(self) -> List[Tuple[str, Answer]]:
        return list(self._answers.items())

    def is_dirty(self, question_id: str) -> bool:
        return self._versions.get(question_id, 0) != self._saved_versions.get(question_id, 0)

    def dirty_entries(self) -> List[Tuple[str, Answer, int]]:
        """Return (question_id, answer, version) for every unconfirmed answer."""
        return [
            (question_id, self._answers[question_id], version)
            for question_id, version in self._versions.items()
            if self._saved_versions.get(question_id, 0) != version
        ]

    def mark_saved(self, question_id: str, version: int) -> bool:
        """
        Confirm that ``version`` of an answer was persisted.

        A confirmation for an older version is ignored so an edit made while
        the save was in flight stays dirty.
        """
        if self._versions.get(question_id) != version:
            self.logger.debug(f"Ignoring stale save confirmation for {question_id} (version {version})")
            return False
        self._saved_versions[question_id] = version
        return True

    @property
    def has_unsaved_changes(self) -> bool:
        return any(self.is_dirty(question_id) for question_id in self._versions)

    def load(self, answers: Iterable[Answer]) -> None:
        """Pre-populate from previously saved answers. Loaded answers count as confirmed."""
        for answer in answers:
            self._answers[answer.question_id] = answer
            version = self._versions.get(answer.question_id, 0) + 1
            self._versions[answer.question_id] = version
            self._saved_versions[answer.question_id] = version

    def view(self) -> Mapping[str, Answer]:
        """Read-only live view of the stored answers."""
        return MappingProxyType(self._answers)

    def snapshot(self) -> List[Answer]:
        return list(self._answers.values())

    def __len__(self) -> int:
        return len(self._answers)
