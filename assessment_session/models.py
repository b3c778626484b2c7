"""
Core data models for the assessment session engine.

Question payloads and answer payloads are closed unions keyed by
``QuestionType``: every question type maps to exactly one data class, and
``build_answer`` is the single place raw learner input is turned into an
``Answer``.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class QuestionType(Enum):
    """Enumeration of supported question types."""
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    ESSAY = "essay"
    FILL_BLANK = "fill_blank"
    MATCHING = "matching"
    CODE = "code"


class AssessmentType(Enum):
    QUIZ = "quiz"
    EXAM = "exam"
    ASSIGNMENT = "assignment"
    PROJECT = "project"
    SURVEY = "survey"
    PRE_ASSESSMENT = "pre_assessment"


class AttemptStatus(Enum):
    """Lifecycle of an attempt. The session engine only writes the first two."""
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    GRADED = "graded"
    EXPIRED = "expired"


# ---------------------------------------------------------------------------
# Question payloads
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QuestionOption:
    """A selectable option of a multiple-choice question."""
    id: str
    text: str
    is_correct: bool = False
    explanation: Optional[str] = None


@dataclass(frozen=True)
class FillBlank:
    id: str
    correct_answer: str
    acceptable_answers: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MatchingPair:
    id: str
    left: str
    right: str


@dataclass(frozen=True)
class MultipleChoiceData:
    options: Tuple[QuestionOption, ...]

    def correct_option(self) -> Optional[QuestionOption]:
        """Return the first option flagged correct, if any."""
        return next((option for option in self.options if option.is_correct), None)

    def find_option(self, option_id: str) -> Optional[QuestionOption]:
        return next((option for option in self.options if option.id == option_id), None)


@dataclass(frozen=True)
class TrueFalseData:
    correct_answer: bool


@dataclass(frozen=True)
class ShortAnswerData:
    acceptable_answers: Tuple[str, ...] = ()


@dataclass(frozen=True)
class EssayData:
    """Essay payload. ``max_words`` is a soft limit shown to the learner."""
    max_words: int = 500
    min_words: Optional[int] = None


@dataclass(frozen=True)
class FillBlankData:
    blanks: Tuple[FillBlank, ...]


@dataclass(frozen=True)
class MatchingData:
    pairs: Tuple[MatchingPair, ...]


@dataclass(frozen=True)
class CodeData:
    language: str = "python"
    starter_code: str = ""


QuestionData = Union[
    MultipleChoiceData,
    TrueFalseData,
    ShortAnswerData,
    EssayData,
    FillBlankData,
    MatchingData,
    CodeData,
]

QUESTION_DATA_TYPES = {
    QuestionType.MULTIPLE_CHOICE: MultipleChoiceData,
    QuestionType.TRUE_FALSE: TrueFalseData,
    QuestionType.SHORT_ANSWER: ShortAnswerData,
    QuestionType.ESSAY: EssayData,
    QuestionType.FILL_BLANK: FillBlankData,
    QuestionType.MATCHING: MatchingData,
    QuestionType.CODE: CodeData,
}

AUTO_GRADABLE_TYPES = frozenset({QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE})


# ---------------------------------------------------------------------------
# Answer payloads
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OptionChoice:
    option_id: str


@dataclass(frozen=True)
class BooleanChoice:
    value: bool


@dataclass(frozen=True)
class BlankEntries:
    values: Tuple[Tuple[str, str], ...]

    def as_dict(self) -> Dict[str, str]:
        return dict(self.values)


@dataclass(frozen=True)
class MatchingSelection:
    matches: Tuple[Tuple[str, str], ...]

    def as_dict(self) -> Dict[str, str]:
        return dict(self.matches)


@dataclass(frozen=True)
class CodeSubmission:
    language: str


AnswerData = Union[OptionChoice, BooleanChoice, BlankEntries, MatchingSelection, CodeSubmission]


@dataclass(frozen=True)
class Answer:
    """A learner's answer to a single question."""
    question_id: str
    answer_text: Optional[str] = None
    answer_data: Optional[AnswerData] = None

    @property
    def is_empty(self) -> bool:
        """True when the answer carries neither text nor structured data."""
        has_text = bool(self.answer_text and self.answer_text.strip())
        return not has_text and self.answer_data is None


@dataclass(frozen=True)
class Question:
    """Represents a single assessment question."""
    id: str
    type: QuestionType
    text: str
    points: float
    data: QuestionData
    skill_tag: str = "general"
    explanation: Optional[str] = None
    order_index: int = 0

    def __post_init__(self):
        expected = QUESTION_DATA_TYPES[self.type]
        if not isinstance(self.data, expected):
            raise TypeError(
                f"Question {self.id} of type {self.type.value} requires "
                f"{expected.__name__}, got {type(self.data).__name__}"
            )
        if self.points <= 0:
            raise ValueError(f"Question {self.id} must be worth a positive number of points")

    @property
    def is_auto_gradable(self) -> bool:
        return self.type in AUTO_GRADABLE_TYPES


@dataclass(frozen=True)
class Assessment:
    """An assessment definition. Immutable for the duration of a session."""
    id: str
    title: str
    questions: Tuple[Question, ...] = ()
    description: str = ""
    instructions: str = ""
    assessment_type: AssessmentType = AssessmentType.QUIZ
    time_limit_minutes: Optional[float] = None
    max_attempts: int = 1
    passing_score: Optional[float] = None
    shuffle_questions: bool = False
    randomize_answers: bool = False
    show_correct_answers: bool = False
    self_graded: bool = True

    def __post_init__(self):
        limit = self.time_limit_minutes
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, (int, float)) or limit <= 0):
            raise ValueError(f"Assessment {self.id} time limit must be a positive number of minutes, got {limit!r}")

    @property
    def total_points(self) -> float:
        return sum(question.points for question in self.questions)

    @property
    def time_limit_seconds(self) -> Optional[int]:
        if self.time_limit_minutes is None:
            return None
        return max(1, int(round(self.time_limit_minutes * 60)))

    @property
    def is_timed(self) -> bool:
        return self.time_limit_seconds is not None


@dataclass
class Attempt:
    """One learner's instance of taking an assessment."""
    id: str
    assessment_id: str
    learner_id: str
    started_at: datetime
    attempt_number: int = 1
    status: AttemptStatus = AttemptStatus.IN_PROGRESS
    submitted_at: Optional[datetime] = None
    time_spent_seconds: int = 0
    score: Optional[float] = None
    total_possible: Optional[float] = None
    percentage: Optional[float] = None
    passed: Optional[bool] = None
    responses: Dict[str, Answer] = field(default_factory=dict)

    @property
    def is_submitted(self) -> bool:
        return self.status != AttemptStatus.IN_PROGRESS


# ---------------------------------------------------------------------------
# Scoring results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SkillScore:
    correct: int = 0
    total: int = 0


@dataclass(frozen=True)
class ScoreResult:
    score: float
    total_points: float
    skill_scores: Dict[str, SkillScore]


@dataclass(frozen=True)
class GradedResponse:
    question_id: str
    answer: Answer
    is_correct: bool
    points_earned: float
    auto_graded: bool


class SubmitTrigger(Enum):
    MANUAL = "manual"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class AssessmentResult:
    """Outcome of a successful submission as seen by the session."""
    attempt_id: str
    time_spent_seconds: int
    trigger: SubmitTrigger
    answers: Dict[str, Answer]
    score: Optional[ScoreResult] = None
    percentage: Optional[float] = None
    passed: Optional[bool] = None

    @property
    def is_scored(self) -> bool:
        return self.score is not None


@dataclass(frozen=True)
class SubmitConfirmation:
    """Pending submit prompt shown before a manual submission."""
    unanswered: int
    total: int

    @property
    def has_unanswered(self) -> bool:
        return self.unanswered > 0


@dataclass
class SessionSettings:
    """Configuration settings for an assessment session."""
    autosave_delay: float = 2.0
    warning_threshold: int = 300
    tick_interval: float = 1.0
    confirm_unanswered: bool = True


# ---------------------------------------------------------------------------
# Answer construction
# ---------------------------------------------------------------------------

_TRUE_STRINGS = {"true", "t", "yes", "y", "1"}
_FALSE_STRINGS = {"false", "f", "no", "n", "0"}


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"Expected true or false, got {value!r}")


def _parse_pairs(value: Any, what: str) -> Tuple[Tuple[str, str], ...]:
    if isinstance(value, dict):
        items = value.items()
    elif isinstance(value, str):
        # "a=1, b=2" style input from text front-ends
        items = []
        for chunk in value.split(","):
            if not chunk.strip():
                continue
            if "=" not in chunk:
                raise ValueError(f"Invalid {what} entry {chunk.strip()!r}, expected key=value")
            key, _, entry = chunk.partition("=")
            items.append((key.strip(), entry.strip()))
    else:
        raise ValueError(f"Expected a mapping of {what}, got {type(value).__name__}")
    return tuple(sorted((str(key), "" if entry is None else str(entry).strip()) for key, entry in items))


def _filled(pairs: Tuple[Tuple[str, str], ...]) -> Tuple[Tuple[str, str], ...]:
    """Drop entries whose value is blank; a blank value clears the entry."""
    return tuple((key, entry) for key, entry in pairs if entry)


def build_answer(question: Question, value: Any) -> Answer:
    """
    Convert raw learner input into an ``Answer`` for the given question.

    Args:
        question: Question being answered
        value: Raw input. Option id or 0-based index for multiple choice,
            bool or "true"/"false" for true/false, text for free-text types,
            a mapping (or "id=value" pairs) for fill-blank and matching.

    Returns:
        Answer carrying the payload variant for the question type

    Raises:
        ValueError: If the input cannot be accepted for this question type
    """
    if isinstance(value, Answer):
        if value.question_id != question.id:
            raise ValueError(f"Answer for {value.question_id} given to question {question.id}")
        return value

    data = question.data

    if question.type == QuestionType.MULTIPLE_CHOICE:
        option = None
        if isinstance(value, int) and not isinstance(value, bool):
            if 0 <= value < len(data.options):
                option = data.options[value]
        elif isinstance(value, str):
            option = data.find_option(value.strip())
        if option is None:
            raise ValueError(f"{value!r} is not an option of question {question.id}")
        return Answer(question.id, answer_text=option.text, answer_data=OptionChoice(option.id))

    if question.type == QuestionType.TRUE_FALSE:
        flag = _parse_bool(value)
        return Answer(question.id, answer_text="True" if flag else "False", answer_data=BooleanChoice(flag))

    if question.type in (QuestionType.SHORT_ANSWER, QuestionType.ESSAY):
        if not isinstance(value, str):
            raise ValueError(f"Question {question.id} expects text, got {type(value).__name__}")
        return Answer(question.id, answer_text=value)

    if question.type == QuestionType.CODE:
        if not isinstance(value, str):
            raise ValueError(f"Question {question.id} expects source code, got {type(value).__name__}")
        submission = CodeSubmission(data.language) if value.strip() else None
        return Answer(question.id, answer_text=value, answer_data=submission)

    if question.type == QuestionType.FILL_BLANK:
        if isinstance(value, str) and "=" not in value and len(data.blanks) == 1:
            value = {data.blanks[0].id: value}
        entries = _parse_pairs(value, "blanks")
        known = {blank.id for blank in data.blanks}
        unknown = [key for key, _ in entries if key not in known]
        if unknown:
            raise ValueError(f"Unknown blanks for question {question.id}: {', '.join(unknown)}")
        entries = _filled(entries)
        text = ", ".join(entry for _, entry in entries)
        return Answer(question.id, answer_text=text, answer_data=BlankEntries(entries) if entries else None)

    if question.type == QuestionType.MATCHING:
        matches = _parse_pairs(value, "matches")
        known = {pair.id for pair in data.pairs}
        unknown = [key for key, _ in matches if key not in known]
        if unknown:
            raise ValueError(f"Unknown pairs for question {question.id}: {', '.join(unknown)}")
        matches = _filled(matches)
        text = ", ".join(f"{key}={entry}" for key, entry in matches)
        return Answer(question.id, answer_text=text, answer_data=MatchingSelection(matches) if matches else None)

    raise ValueError(f"Unsupported question type: {question.type}")
