"""
Presentation data for sessions and results, independent of Discord.
"""
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from . import scoring
from .models import (
    Assessment,
    AssessmentResult,
    EssayData,
    Question,
    QuestionType,
    SkillScore,
    SubmitTrigger,
    TrueFalseData,
)
from .session_clock import format_time

__all__ = [
    'ReviewRow',
    'ResultsReport',
    'SkillRow',
    'build_results_report',
    'format_duration',
    'format_time',
    'is_over_word_limit',
    'progress_bar',
    'score_badge',
    'unanswered_warning',
    'word_count',
    'word_count_label',
]

STRONG_SKILL_PERCENT = 70
DEVELOPING_SKILL_PERCENT = 50

OVERALL_RECOMMENDATIONS = (
    (80, "🎉 **Excellent work!** You have strong knowledge in this area. "
         "Consider exploring advanced topics or mentoring others."),
    (60, "✅ **Good job!** You have a solid foundation. Review the questions you "
         "missed and consider taking some intermediate courses."),
    (40, "📚 **Keep learning!** You have a basic understanding but need more "
         "practice. We recommend starting with beginner-level courses."),
    (0, "💪 **Don't give up!** Everyone starts somewhere. Begin with fundamental "
        "courses and practice regularly. You've got this!"),
)


@dataclass(frozen=True)
class SkillRow:
    skill: str
    correct: int
    total: int
    percent: int
    level: str


@dataclass(frozen=True)
class ReviewRow:
    number: int
    question_id: str
    text: str
    answer_text: str
    status: str
    points: float
    points_earned: float
    correct_answer: Optional[str] = None
    explanation: Optional[str] = None


@dataclass(frozen=True)
class ResultsReport:
    """Everything a results screen shows for one submitted attempt."""
    title: str
    scored: bool
    time_spent: str
    answered: int
    total_questions: int
    score: Optional[float] = None
    total_points: Optional[float] = None
    percent: Optional[int] = None
    badge: Optional[str] = None
    passed: Optional[bool] = None
    passing_score: Optional[float] = None
    timed_out: bool = False
    skills: List[SkillRow] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    review: List[ReviewRow] = field(default_factory=list)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score_badge(percent: float) -> str:
    if percent >= 80:
        return "Excellent"
    if percent >= 60:
        return "Good"
    if percent >= 40:
        return "Fair"
    return "Needs Improvement"


def skill_level(percent: float) -> str:
    if percent >= STRONG_SKILL_PERCENT:
        return "strong"
    if percent >= DEVELOPING_SKILL_PERCENT:
        return "developing"
    return "weak"


def format_duration(seconds: int) -> str:
    """Render a duration as ``Xm Ys``."""
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes}m {secs}s"


def word_count(text: Optional[str]) -> int:
    if not text:
        return 0
    return len(text.split())


def word_count_label(text: Optional[str], max_words: int) -> str:
    """Counter shown under essay answers, e.g. ``620 / 500``."""
    return f"{word_count(text)} / {max_words}"


def is_over_word_limit(text: Optional[str], max_words: int) -> bool:
    """Informational only. Answers over the limit are still accepted."""
    return word_count(text) > max_words


def progress_bar(percent: float, width: int = 10) -> str:
    percent = min(100.0, max(0.0, percent))
    filled = _round_half_up(percent / 100 * width)
    return "█" * filled + "░" * (width - filled)


def unanswered_warning(count: int) -> Optional[str]:
    """Short warning such as ``2 unanswered``; None when everything is answered."""
    if count <= 0:
        return None
    return f"{count} unanswered"


def unanswered_message(count: int) -> str:
    noun = "question" if count == 1 else "questions"
    return f"You have {count} unanswered {noun}. Are you sure you want to submit?"


def essay_limit(question: Question) -> Optional[int]:
    if isinstance(question.data, EssayData):
        return question.data.max_words
    return None


def _skill_rows(skill_scores: dict) -> List[SkillRow]:
    rows = []
    for skill, skill_score in skill_scores.items():
        percent = _skill_percent(skill_score)
        rows.append(SkillRow(skill, skill_score.correct, skill_score.total, percent, skill_level(percent)))
    return rows


def _skill_percent(skill_score: SkillScore) -> int:
    if skill_score.total == 0:
        return 0
    return _round_half_up(skill_score.correct / skill_score.total * 100)


def _correct_answer_text(question: Question) -> Optional[str]:
    if question.type == QuestionType.MULTIPLE_CHOICE:
        option = question.data.correct_option()
        return option.text if option else None
    if isinstance(question.data, TrueFalseData):
        return "True" if question.data.correct_answer else "False"
    if question.type == QuestionType.FILL_BLANK:
        return ", ".join(blank.correct_answer for blank in question.data.blanks)
    if question.type == QuestionType.MATCHING:
        return ", ".join(f"{pair.left} → {pair.right}" for pair in question.data.pairs)
    return None


def _review_rows(assessment: Assessment, questions: Sequence[Question], result: AssessmentResult) -> List[ReviewRow]:
    rows = []
    for number, question in enumerate(questions, start=1):
        answer = result.answers.get(question.id)
        answered = answer is not None and not answer.is_empty
        correct = scoring.is_correct(question, answer)

        if not answered:
            status = "unanswered"
        elif not question.is_auto_gradable:
            status = "pending review"
        else:
            status = "correct" if correct else "incorrect"

        reveal = assessment.show_correct_answers
        rows.append(ReviewRow(
            number=number,
            question_id=question.id,
            text=question.text,
            answer_text=answer.answer_text if answered and answer.answer_text else "Not answered",
            status=status,
            points=question.points,
            points_earned=question.points if correct else 0,
            correct_answer=_correct_answer_text(question) if reveal else None,
            explanation=question.explanation if reveal else None,
        ))
    return rows


def build_results_report(
    assessment: Assessment,
    questions: Sequence[Question],
    result: AssessmentResult
) -> ResultsReport:
    """
    Build the results screen for a submitted attempt.

    Args:
        assessment: Assessment that was taken
        questions: Questions in the order they were presented
        result: Result of the successful submission

    Returns:
        ResultsReport; score fields stay None for externally graded assessments
    """
    answered = sum(1 for answer in result.answers.values() if not answer.is_empty)
    common = dict(
        title=assessment.title,
        time_spent=format_duration(result.time_spent_seconds),
        answered=answered,
        total_questions=len(questions),
        passing_score=assessment.passing_score,
        timed_out=result.trigger == SubmitTrigger.TIMEOUT,
        review=_review_rows(assessment, questions, result),
    )

    if not result.is_scored:
        return ResultsReport(scored=False, **common)

    percent = _round_half_up(result.percentage)
    skills = _skill_rows(result.score.skill_scores)

    recommendations = [next(text for threshold, text in OVERALL_RECOMMENDATIONS if percent >= threshold)]
    recommendations.extend(
        f"• **{row.skill}:** Review core concepts and take beginner courses to strengthen your foundation"
        for row in skills
        if row.percent < STRONG_SKILL_PERCENT
    )

    return ResultsReport(
        scored=True,
        score=result.score.score,
        total_points=result.score.total_points,
        percent=percent,
        badge=score_badge(percent),
        passed=result.passed if assessment.passing_score is not None else None,
        skills=skills,
        recommendations=recommendations,
        **common
    )
