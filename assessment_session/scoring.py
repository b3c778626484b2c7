"""
Scoring engine for assessment attempts.

All functions here are pure: no I/O and no shared state, so scoring the same
questions and answers twice yields equal results. Only multiple-choice and
true/false questions are auto-graded. Every other type counts toward the
total but is left to manual or external grading.
"""
from typing import Dict, List, Mapping, Optional, Sequence

from .models import (
    Answer,
    BooleanChoice,
    GradedResponse,
    OptionChoice,
    Question,
    QuestionType,
    ScoreResult,
    SkillScore,
)


def is_auto_gradable(question: Question) -> bool:
    return question.is_auto_gradable


def is_correct(question: Question, answer: Optional[Answer]) -> bool:
    """
    Decide whether an answer is correct by value equality.

    Args:
        question: Question being graded
        answer: Learner's answer, or None when unanswered

    Returns:
        True only for an auto-gradable question answered with its
        designated correct value
    """
    if answer is None or answer.answer_data is None:
        return False

    if question.type == QuestionType.MULTIPLE_CHOICE:
        correct = question.data.correct_option()
        if correct is None or not isinstance(answer.answer_data, OptionChoice):
            return False
        return answer.answer_data.option_id == correct.id

    if question.type == QuestionType.TRUE_FALSE:
        if not isinstance(answer.answer_data, BooleanChoice):
            return False
        return answer.answer_data.value == question.data.correct_answer

    return False


def score(questions: Sequence[Question], answers: Mapping[str, Answer]) -> ScoreResult:
    """
    Score a set of answers against a question set.

    Args:
        questions: All questions of the assessment, in presentation order
        answers: Learner answers keyed by question id

    Returns:
        ScoreResult with earned score, total points and per-skill breakdown
    """
    earned = 0
    total_points = 0
    skill_counts: Dict[str, List[int]] = {}

    for question in questions:
        total_points += question.points
        counts = skill_counts.setdefault(question.skill_tag, [0, 0])
        counts[1] += 1

        if is_correct(question, answers.get(question.id)):
            earned += question.points
            counts[0] += 1

    skill_scores = {
        skill: SkillScore(correct=correct, total=total)
        for skill, (correct, total) in skill_counts.items()
    }
    return ScoreResult(score=earned, total_points=total_points, skill_scores=skill_scores)


def grade_responses(questions: Sequence[Question], answers: Mapping[str, Answer]) -> List[GradedResponse]:
    """Build per-response grading rows for every answered question."""
    graded = []
    for question in questions:
        answer = answers.get(question.id)
        if answer is None:
            continue
        correct = is_correct(question, answer)
        graded.append(GradedResponse(
            question_id=question.id,
            answer=answer,
            is_correct=correct,
            points_earned=question.points if correct else 0,
            auto_graded=question.is_auto_gradable,
        ))
    return graded


def percentage(earned: float, total_points: float) -> float:
    if total_points <= 0:
        return 0.0
    return earned / total_points * 100


def passed(percent: float, passing_score: Optional[float]) -> bool:
    """An assessment without a passing score is always passed."""
    if passing_score is None:
        return True
    return percent >= passing_score
