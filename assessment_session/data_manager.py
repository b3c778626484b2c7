"""
Data manager for JSON assessment files and attempt persistence.

Implements the ``PersistenceGateway`` contract on top of a directory of JSON
assessment definitions. Attempts live in memory and are mirrored to an
attempts directory as JSON when one is configured, and read back from it on
startup by ``load_attempts``.
"""
import json
import logging
import os
import uuid
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from . import scoring
from .gateway import (
    AttemptAlreadySubmittedError,
    AttemptLimitError,
    GatewayError,
    NotFoundError,
    PersistenceGateway,
)
from .models import (
    Answer,
    AnswerData,
    Assessment,
    AssessmentType,
    Attempt,
    AttemptStatus,
    BlankEntries,
    BooleanChoice,
    CodeData,
    CodeSubmission,
    EssayData,
    FillBlank,
    FillBlankData,
    MatchingData,
    MatchingPair,
    MatchingSelection,
    MultipleChoiceData,
    OptionChoice,
    Question,
    QuestionOption,
    QuestionType,
    ShortAnswerData,
    TrueFalseData,
)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _parse_multiple_choice(data: dict) -> MultipleChoiceData:
    options = tuple(
        QuestionOption(
            id=str(option.get("id", index)),
            text=str(option["text"]),
            is_correct=bool(option.get("is_correct", False)),
            explanation=option.get("explanation"),
        )
        for index, option in enumerate(data.get("options", []))
    )
    if not options:
        raise ValueError("multiple_choice questions need at least one option")
    return MultipleChoiceData(options=options)


def _parse_true_false(data: dict) -> TrueFalseData:
    if not isinstance(data.get("correct_answer"), bool):
        raise ValueError("true_false questions need a boolean 'correct_answer'")
    return TrueFalseData(correct_answer=data["correct_answer"])


def _parse_short_answer(data: dict) -> ShortAnswerData:
    return ShortAnswerData(acceptable_answers=tuple(str(a) for a in data.get("acceptable_answers", [])))


def _parse_essay(data: dict) -> EssayData:
    return EssayData(max_words=int(data.get("max_words", 500)), min_words=data.get("min_words"))


def _parse_fill_blank(data: dict) -> FillBlankData:
    blanks = tuple(
        FillBlank(
            id=str(blank.get("id", index)),
            correct_answer=str(blank["correct_answer"]),
            acceptable_answers=tuple(str(a) for a in blank.get("acceptable_answers", [])),
        )
        for index, blank in enumerate(data.get("blanks", []))
    )
    if not blanks:
        raise ValueError("fill_blank questions need at least one blank")
    return FillBlankData(blanks=blanks)


def _parse_matching(data: dict) -> MatchingData:
    pairs = tuple(
        MatchingPair(id=str(pair.get("id", index)), left=str(pair["left"]), right=str(pair["right"]))
        for index, pair in enumerate(data.get("pairs", []))
    )
    if not pairs:
        raise ValueError("matching questions need at least one pair")
    return MatchingData(pairs=pairs)


def _parse_code(data: dict) -> CodeData:
    return CodeData(language=str(data.get("language", "python")), starter_code=str(data.get("starter_code", "")))


_DATA_PARSERS: Dict[QuestionType, Callable[[dict], Any]] = {
    QuestionType.MULTIPLE_CHOICE: _parse_multiple_choice,
    QuestionType.TRUE_FALSE: _parse_true_false,
    QuestionType.SHORT_ANSWER: _parse_short_answer,
    QuestionType.ESSAY: _parse_essay,
    QuestionType.FILL_BLANK: _parse_fill_blank,
    QuestionType.MATCHING: _parse_matching,
    QuestionType.CODE: _parse_code,
}


def parse_question(raw: dict, index: int) -> Question:
    """
    Parse one question record.

    Raises:
        ValueError: If the record is malformed
    """
    question_type = QuestionType(raw["type"])
    data = _DATA_PARSERS[question_type](raw.get("question_data", {}))
    tags = raw.get("tags") or []
    skill_tag = raw.get("skill_tag") or (tags[0] if tags else "general")
    return Question(
        id=str(raw.get("id", f"q{index + 1}")),
        type=question_type,
        text=str(raw["text"]),
        points=raw.get("points", 1),
        data=data,
        skill_tag=str(skill_tag),
        explanation=raw.get("explanation"),
        order_index=int(raw.get("order_index", index)),
    )


def parse_assessment(raw: dict, default_id: str) -> Assessment:
    meta = raw.get("assessment", {})
    questions = sorted(
        (parse_question(q, i) for i, q in enumerate(raw["questions"])),
        key=lambda question: question.order_index,
    )
    return Assessment(
        id=str(meta.get("id", default_id)),
        title=str(meta.get("title", default_id)),
        questions=tuple(questions),
        description=meta.get("description", ""),
        instructions=meta.get("instructions", ""),
        assessment_type=AssessmentType(meta.get("type", AssessmentType.QUIZ.value)),
        time_limit_minutes=meta.get("time_limit_minutes"),
        max_attempts=int(meta.get("max_attempts", 1)),
        passing_score=meta.get("passing_score"),
        shuffle_questions=bool(meta.get("shuffle_questions", False)),
        randomize_answers=bool(meta.get("randomize_answers", False)),
        show_correct_answers=bool(meta.get("show_correct_answers", False)),
        self_graded=bool(meta.get("self_graded", True)),
    )


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def answer_data_to_dict(data: Optional[AnswerData]) -> Optional[dict]:
    if data is None:
        return None
    if isinstance(data, OptionChoice):
        return {"option_id": data.option_id}
    if isinstance(data, BooleanChoice):
        return {"value": data.value}
    if isinstance(data, BlankEntries):
        return {"blanks": data.as_dict()}
    if isinstance(data, MatchingSelection):
        return {"matches": data.as_dict()}
    if isinstance(data, CodeSubmission):
        return {"language": data.language}
    raise TypeError(f"Unknown answer payload {type(data).__name__}")


def answer_data_from_dict(raw: Optional[dict]) -> Optional[AnswerData]:
    if not raw:
        return None
    if "option_id" in raw:
        return OptionChoice(str(raw["option_id"]))
    if "value" in raw:
        return BooleanChoice(bool(raw["value"]))
    if "blanks" in raw:
        return BlankEntries(tuple(sorted(raw["blanks"].items())))
    if "matches" in raw:
        return MatchingSelection(tuple(sorted(raw["matches"].items())))
    if "language" in raw:
        return CodeSubmission(str(raw["language"]))
    raise ValueError(f"Unrecognized answer payload: {raw}")


def answer_to_dict(answer: Answer) -> dict:
    return {
        "question_id": answer.question_id,
        "answer_text": answer.answer_text,
        "answer_data": answer_data_to_dict(answer.answer_data),
    }


def answer_from_dict(raw: dict) -> Answer:
    return Answer(
        question_id=str(raw["question_id"]),
        answer_text=raw.get("answer_text"),
        answer_data=answer_data_from_dict(raw.get("answer_data")),
    )


def attempt_to_dict(attempt: Attempt) -> dict:
    return {
        "id": attempt.id,
        "assessment_id": attempt.assessment_id,
        "learner_id": attempt.learner_id,
        "attempt_number": attempt.attempt_number,
        "status": attempt.status.value,
        "started_at": attempt.started_at.isoformat(),
        "submitted_at": attempt.submitted_at.isoformat() if attempt.submitted_at else None,
        "time_spent_seconds": attempt.time_spent_seconds,
        "score": attempt.score,
        "total_possible": attempt.total_possible,
        "percentage": attempt.percentage,
        "passed": attempt.passed,
        "responses": [answer_to_dict(answer) for answer in attempt.responses.values()],
    }


def attempt_from_dict(raw: dict) -> Attempt:
    submitted_at = raw.get("submitted_at")
    responses = [answer_from_dict(item) for item in raw.get("responses", [])]
    return Attempt(
        id=str(raw["id"]),
        assessment_id=str(raw["assessment_id"]),
        learner_id=str(raw["learner_id"]),
        started_at=datetime.fromisoformat(raw["started_at"]),
        attempt_number=int(raw.get("attempt_number", 1)),
        status=AttemptStatus(raw.get("status", AttemptStatus.IN_PROGRESS.value)),
        submitted_at=datetime.fromisoformat(submitted_at) if submitted_at else None,
        time_spent_seconds=int(raw.get("time_spent_seconds", 0)),
        score=raw.get("score"),
        total_possible=raw.get("total_possible"),
        percentage=raw.get("percentage"),
        passed=raw.get("passed"),
        responses={answer.question_id: answer for answer in responses},
    )


class DataManager(PersistenceGateway):
    """Manages loading of JSON assessment files and attempt bookkeeping."""

    MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB

    def __init__(
        self,
        assessment_directory: str = "./assessments/",
        attempts_directory: Optional[str] = None,
        now: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize DataManager.

        Args:
            assessment_directory: Directory containing JSON assessment files
            attempts_directory: Optional directory where attempts are mirrored
            now: Clock used for attempt timestamps
        """
        self.assessment_directory = Path(assessment_directory)
        self.attempts_directory = Path(attempts_directory) if attempts_directory else None
        self.loaded_assessments: Dict[str, Assessment] = {}
        self.logger = logging.getLogger(__name__)
        self.load_errors: List[str] = []
        self.fallback_assessment_created = False
        self._now = now
        self._attempts: Dict[str, Attempt] = {}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_assessment_files(self) -> Dict[str, Assessment]:
        """
        Load all JSON files from the assessment directory.

        Returns:
            Dictionary mapping assessment ids to Assessment objects
        """
        self.loaded_assessments.clear()
        self.load_errors.clear()
        self.fallback_assessment_created = False

        directory_result = self._ensure_assessment_directory()
        if not directory_result['success']:
            self.load_errors.append(directory_result['error'])
            return self._create_fallback_assessment()

        try:
            json_files = sorted(self.assessment_directory.glob("*.json"))
        except OSError as e:
            self.load_errors.append(f"System error scanning {self.assessment_directory}: {e}")
            return self._create_fallback_assessment()

        if not json_files:
            self.logger.warning(f"No JSON files found in {self.assessment_directory}")
            self.load_errors.append(f"No assessment files found in {self.assessment_directory}")
            return self._create_sample_assessment()

        successful_loads = 0
        for json_file in json_files:
            load_result = self._load_assessment_file_safely(json_file)
            if load_result['success']:
                successful_loads += 1
            else:
                self.load_errors.append(f"{json_file.name}: {load_result['error']}")

        if successful_loads == 0:
            self.logger.error("No assessment files could be loaded successfully")
            self.load_errors.append("All assessment files failed to load")
            return self._create_fallback_assessment()

        self.logger.info(f"Successfully loaded {successful_loads} assessment files")
        if self.load_errors:
            self.logger.warning(f"Encountered {len(self.load_errors)} loading errors")

        return self.loaded_assessments

    def load_attempts(self) -> int:
        """
        Read attempts mirrored to the attempts directory back into memory.

        Unreadable files are reported in the load errors and skipped.

        Returns:
            Number of attempts loaded
        """
        if self.attempts_directory is None or not self.attempts_directory.is_dir():
            return 0

        try:
            attempt_files = sorted(self.attempts_directory.glob("*.json"))
        except OSError as e:
            self.load_errors.append(f"System error scanning {self.attempts_directory}: {e}")
            return 0

        loaded = 0
        for attempt_file in attempt_files:
            try:
                with open(attempt_file, 'r', encoding='utf-8') as f:
                    attempt = attempt_from_dict(json.load(f))
            except json.JSONDecodeError as e:
                self.load_errors.append(f"{attempt_file.name}: Invalid JSON: {e}")
                continue
            except (AttributeError, KeyError, ValueError, TypeError) as e:
                self.load_errors.append(f"{attempt_file.name}: Invalid attempt data: {e}")
                continue
            except OSError as e:
                self.load_errors.append(f"{attempt_file.name}: System error: {e}")
                continue
            self._attempts[attempt.id] = attempt
            loaded += 1

        self.logger.info(f"Loaded {loaded} attempts from {self.attempts_directory}")
        return loaded

    def validate_assessment_structure(self, data: Any) -> bool:
        """
        Validate that JSON data has the expected assessment structure.

        Expected structure:
        {
            "assessment": {"id": str, "title": str, ...},   # Optional
            "questions": [
                {"type": str, "text": str, "points": number, "question_data": {...}}
            ]
        }
        """
        if not isinstance(data, dict):
            self.logger.error("Assessment data must be a JSON object")
            return False

        if "assessment" in data and not isinstance(data["assessment"], dict):
            self.logger.error("'assessment' value must be an object")
            return False

        time_limit = data.get("assessment", {}).get("time_limit_minutes")
        if time_limit is not None and (
            isinstance(time_limit, bool) or not isinstance(time_limit, (int, float)) or time_limit <= 0
        ):
            self.logger.error(f"'time_limit_minutes' must be a positive number, got {time_limit!r}")
            return False

        questions = data.get("questions")
        if not isinstance(questions, list):
            self.logger.error("Assessment data must contain a 'questions' array")
            return False

        if not questions:
            self.logger.error("Questions array cannot be empty")
            return False

        valid_types = {question_type.value for question_type in QuestionType}
        for i, question in enumerate(questions):
            if not isinstance(question, dict):
                self.logger.error(f"Question {i} must be an object")
                return False

            if question.get("type") not in valid_types:
                self.logger.error(f"Question {i} has unknown type {question.get('type')!r}")
                return False

            if not isinstance(question.get("text"), str):
                self.logger.error(f"Question {i} 'text' field must be a string")
                return False

            points = question.get("points", 1)
            if isinstance(points, bool) or not isinstance(points, (int, float)) or points <= 0:
                self.logger.error(f"Question {i} 'points' must be a positive number")
                return False

            if "question_data" in question and not isinstance(question["question_data"], dict):
                self.logger.error(f"Question {i} 'question_data' field must be an object")
                return False

        return True

    def _ensure_assessment_directory(self) -> Dict[str, Any]:
        try:
            if not self.assessment_directory.exists():
                self.assessment_directory.mkdir(parents=True, exist_ok=True)
                self.logger.info(f"Created assessment directory: {self.assessment_directory}")

            if not os.access(self.assessment_directory, os.R_OK):
                return {
                    'success': False,
                    'error': f"Permission denied: Cannot read from {self.assessment_directory}"
                }

            return {'success': True}

        except PermissionError:
            return {
                'success': False,
                'error': f"Permission denied: Cannot access {self.assessment_directory}"
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error accessing {self.assessment_directory}: {e}"
            }

    def _load_assessment_file_safely(self, json_file: Path) -> Dict[str, Any]:
        """
        Load a single assessment file.

        Returns:
            Dictionary with success status and error message if applicable
        """
        try:
            file_size = json_file.stat().st_size
            if file_size > self.MAX_FILE_SIZE:
                return {
                    'success': False,
                    'error': f"File too large ({file_size / 1024 / 1024:.1f}MB). Maximum size is {self.MAX_FILE_SIZE / 1024 / 1024}MB"
                }

            with open(json_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            if not self.validate_assessment_structure(data):
                return {
                    'success': False,
                    'error': "Invalid JSON structure or validation failed"
                }

            assessment = parse_assessment(data, json_file.stem)
            self.loaded_assessments[assessment.id] = assessment
            self.logger.info(f"Loaded assessment '{assessment.id}' with {len(assessment.questions)} questions")
            return {'success': True}

        except json.JSONDecodeError as e:
            return {'success': False, 'error': f"Invalid JSON: {e}"}
        except (KeyError, ValueError, TypeError) as e:
            return {'success': False, 'error': f"Invalid question data: {e}"}
        except PermissionError:
            return {'success': False, 'error': "Permission denied"}
        except OSError as e:
            return {'success': False, 'error': f"System error: {e}"}

    def _create_sample_assessment(self) -> Dict[str, Assessment]:
        """Write and load a sample assessment when the directory is empty."""
        sample_data = {
            "assessment": {
                "id": "sample_assessment",
                "title": "Sample Assessment",
                "instructions": "Answer each question, then submit on the last one.",
                "time_limit_minutes": 10,
                "max_attempts": 3,
                "passing_score": 50,
                "show_correct_answers": True
            },
            "questions": [
                {
                    "id": "q1",
                    "type": "multiple_choice",
                    "text": "Which keyword defines a function in Python?",
                    "points": 1,
                    "skill_tag": "syntax",
                    "question_data": {
                        "options": [
                            {"id": "a", "text": "func"},
                            {"id": "b", "text": "def", "is_correct": True},
                            {"id": "c", "text": "lambda"}
                        ]
                    }
                },
                {
                    "id": "q2",
                    "type": "true_false",
                    "text": "Python lists are immutable.",
                    "points": 1,
                    "skill_tag": "data-structures",
                    "question_data": {"correct_answer": False}
                },
                {
                    "id": "q3",
                    "type": "essay",
                    "text": "Explain the difference between a list and a tuple.",
                    "points": 3,
                    "skill_tag": "data-structures",
                    "question_data": {"max_words": 200}
                }
            ]
        }

        try:
            sample_file_path = self.assessment_directory / "sample_assessment.json"
            if not sample_file_path.exists():
                with open(sample_file_path, 'w', encoding='utf-8') as f:
                    json.dump(sample_data, f, indent=2, ensure_ascii=False)
                self.logger.info(f"Created sample assessment file: {sample_file_path}")

            assessment = parse_assessment(sample_data, "sample_assessment")
            self.loaded_assessments[assessment.id] = assessment
            self.logger.info(f"Loaded sample assessment with {len(assessment.questions)} questions")
            return self.loaded_assessments

        except OSError as e:
            self.logger.error(f"Failed to create sample assessment: {e}")
            self.load_errors.append(f"Failed to create sample assessment: {e}")
            return self._create_fallback_assessment()

    def _create_fallback_assessment(self) -> Dict[str, Assessment]:
        """Create a minimal in-memory assessment when file operations fail."""
        question = Question(
            id="fallback_q1",
            type=QuestionType.TRUE_FALSE,
            text="This is a fallback question. Assessment files could not be loaded.",
            points=1,
            data=TrueFalseData(correct_answer=True),
        )
        assessment = Assessment(id="fallback_assessment", title="Fallback Assessment", questions=(question,))
        self.loaded_assessments[assessment.id] = assessment
        self.fallback_assessment_created = True
        self.logger.warning("Created fallback assessment due to file loading failures")
        return self.loaded_assessments

    def get_available_assessments(self) -> List[str]:
        return list(self.loaded_assessments.keys())

    def get_assessment(self, assessment_id: str) -> Optional[Assessment]:
        return self.loaded_assessments.get(assessment_id)

    def assessment_exists(self, assessment_id: str) -> bool:
        return assessment_id in self.loaded_assessments

    def get_load_errors(self) -> List[str]:
        return self.load_errors.copy()

    def has_load_errors(self) -> bool:
        return len(self.load_errors) > 0

    def get_loading_summary(self) -> Dict[str, Any]:
        return {
            'total_assessments': len(self.loaded_assessments),
            'has_errors': self.has_load_errors(),
            'error_count': len(self.load_errors),
            'errors': self.get_load_errors(),
            'fallback_active': self.fallback_assessment_created,
            'assessment_directory': str(self.assessment_directory),
            'available_assessments': self.get_available_assessments()
        }

    # ------------------------------------------------------------------
    # PersistenceGateway
    # ------------------------------------------------------------------

    def _require_assessment(self, assessment_id: str) -> Assessment:
        assessment = self.loaded_assessments.get(assessment_id)
        if assessment is None:
            raise NotFoundError(f"Assessment '{assessment_id}' not found")
        return assessment

    def _require_open_attempt(self, attempt_id: str) -> Attempt:
        attempt = self._attempts.get(attempt_id)
        if attempt is None:
            raise NotFoundError(f"Attempt '{attempt_id}' not found")
        if attempt.is_submitted:
            raise AttemptAlreadySubmittedError(f"Attempt '{attempt_id}' was already submitted")
        return attempt

    async def list_assessments(self) -> List[Assessment]:
        return list(self.loaded_assessments.values())

    async def fetch_assessment(self, assessment_id: str) -> Assessment:
        return self._require_assessment(assessment_id)

    async def fetch_questions(self, assessment_id: str) -> List[Question]:
        assessment = self._require_assessment(assessment_id)
        return sorted(assessment.questions, key=lambda question: question.order_index)

    async def start_attempt(self, assessment_id: str, learner_id: str) -> Attempt:
        assessment = self._require_assessment(assessment_id)

        previous = [
            attempt for attempt in self._attempts.values()
            if attempt.assessment_id == assessment_id and attempt.learner_id == learner_id
        ]
        for attempt in previous:
            if attempt.status == AttemptStatus.IN_PROGRESS:
                self.logger.info(f"Resuming attempt {attempt.id} for learner {learner_id}")
                return attempt

        if len(previous) >= assessment.max_attempts:
            raise AttemptLimitError(
                f"Learner {learner_id} has used all {assessment.max_attempts} attempts for '{assessment_id}'"
            )

        attempt = Attempt(
            id=uuid.uuid4().hex,
            assessment_id=assessment_id,
            learner_id=learner_id,
            started_at=self._now(),
            attempt_number=len(previous) + 1,
        )
        self._attempts[attempt.id] = attempt
        self._write_attempt(attempt)
        self.logger.info(f"Started attempt {attempt.id} (#{attempt.attempt_number}) for learner {learner_id}")
        return attempt

    async def save_response(self, attempt_id: str, answer: Answer) -> None:
        attempt = self._require_open_attempt(attempt_id)
        assessment = self._require_assessment(attempt.assessment_id)
        if not any(question.id == answer.question_id for question in assessment.questions):
            raise NotFoundError(f"Question '{answer.question_id}' is not part of '{assessment.id}'")
        attempt.responses[answer.question_id] = answer
        self._write_attempt(attempt)

    async def fetch_responses(self, attempt_id: str) -> Dict[str, Answer]:
        attempt = self._attempts.get(attempt_id)
        if attempt is None:
            raise NotFoundError(f"Attempt '{attempt_id}' not found")
        return dict(attempt.responses)

    async def submit_attempt(self, attempt_id: str, answers: Sequence[Answer], time_spent_seconds: int) -> Attempt:
        attempt = self._require_open_attempt(attempt_id)
        assessment = self._require_assessment(attempt.assessment_id)

        responses = {answer.question_id: answer for answer in answers}
        graded = scoring.grade_responses(assessment.questions, responses)
        earned = sum(row.points_earned for row in graded)
        percent = scoring.percentage(earned, assessment.total_points)

        submitted = replace(
            attempt,
            status=AttemptStatus.SUBMITTED,
            submitted_at=self._now(),
            time_spent_seconds=time_spent_seconds,
            score=earned,
            total_possible=assessment.total_points,
            percentage=percent,
            passed=scoring.passed(percent, assessment.passing_score),
            responses=responses,
        )
        self._write_attempt(submitted)
        self._attempts[attempt_id] = submitted
        self.logger.info(f"Submitted attempt {attempt_id}: {earned}/{assessment.total_points} ({percent:.1f}%)")
        return submitted

    def get_attempt(self, attempt_id: str) -> Optional[Attempt]:
        return self._attempts.get(attempt_id)

    def _write_attempt(self, attempt: Attempt) -> None:
        if self.attempts_directory is None:
            return
        try:
            self.attempts_directory.mkdir(parents=True, exist_ok=True)
            path = self.attempts_directory / f"{attempt.id}.json"
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(attempt_to_dict(attempt), f, indent=2, ensure_ascii=False)
        except OSError as e:
            raise GatewayError(f"Failed to persist attempt {attempt.id}: {e}") from e
