"""
Discord embed builders for assessment sessions.
"""
from typing import Optional, Sequence

import discord

from .models import Assessment, Question, QuestionType, SubmitConfirmation
from .session_controller import SessionController, SessionState
from . import views

SUCCESS_COLOR = 0x00ff00
INFO_COLOR = 0x6699ff
WARNING_COLOR = 0xffaa00
URGENT_COLOR = 0xff6600
ERROR_COLOR = 0xff0000

BADGE_COLORS = {
    "Excellent": 0x00ff00,
    "Good": 0x0099ff,
    "Fair": 0xffaa00,
    "Needs Improvement": 0xff0000,
}

FIELD_LIMIT = 1024


def _clip(text: str, limit: int = FIELD_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - 1] + "…"


def timer_color(remaining: Optional[int], warning_threshold: int) -> int:
    """Green while comfortable, orange inside the warning window, red in the last minute."""
    if remaining is None:
        return INFO_COLOR
    if remaining > warning_threshold:
        return SUCCESS_COLOR
    if remaining > 60:
        return URGENT_COLOR
    return ERROR_COLOR


def error_embed(message: str, title: str = "❌ Error") -> discord.Embed:
    embed = discord.Embed(title=title, description=message, color=ERROR_COLOR)
    embed.set_footer(text="If this error persists, try using /help for available commands")
    return embed


def info_embed(message: str, title: str = "ℹ️ Information") -> discord.Embed:
    return discord.Embed(title=title, description=message, color=INFO_COLOR)


def warning_embed(message: str, title: str = "⚠️ Warning") -> discord.Embed:
    return discord.Embed(title=title, description=message, color=WARNING_COLOR)


def help_embed() -> discord.Embed:
    embed = discord.Embed(
        title="📚 Assessment Bot Help",
        description="Take assessments one question at a time. Answers are saved automatically.",
        color=SUCCESS_COLOR
    )
    embed.add_field(
        name="🎯 Taking an assessment",
        value=(
            "`/assessments` - List available assessments\n"
            "`/take <assessment>` - Start or resume an assessment\n"
            "`/status` - Show your progress and time remaining"
        ),
        inline=False
    )
    embed.add_field(
        name="🧭 Navigation",
        value=(
            "`/question` - Show the current question\n"
            "`/next`, `/previous` - Move between questions\n"
            "`/goto <number>` - Jump to a question"
        ),
        inline=False
    )
    embed.add_field(
        name="✍️ Answering",
        value=(
            "`/answer <value>` - Answer the current question\n"
            "Multiple choice: the option id. True/false: `true` or `false`.\n"
            "Fill in the blank and matching: `id=value, id2=value2`"
        ),
        inline=False
    )
    embed.add_field(
        name="📤 Finishing",
        value=(
            "`/submit` - Submit your answers (`confirm:true` skips the check)\n"
            "`/exit` - Leave without submitting"
        ),
        inline=False
    )
    embed.set_footer(text="Use slash commands to interact with the bot")
    return embed


def assessments_embed(assessments: Sequence[Assessment], fallback_active: bool = False) -> discord.Embed:
    if not assessments:
        return warning_embed("No assessments are available right now.", "📭 No Assessments")

    embed = discord.Embed(title="📋 Available Assessments", color=INFO_COLOR)
    for assessment in assessments[:25]:
        details = [f"{len(assessment.questions)} questions, {assessment.total_points:g} points"]
        if assessment.is_timed:
            details.append(f"⏱️ {assessment.time_limit_minutes} min")
        if assessment.passing_score is not None:
            details.append(f"Pass: {assessment.passing_score:g}%")
        value = " • ".join(details)
        if assessment.description:
            value = f"{assessment.description}\n{value}"
        embed.add_field(name=f"{assessment.title} (`{assessment.id}`)", value=_clip(value), inline=False)

    if fallback_active:
        embed.add_field(
            name="⚠️ Using Fallback Assessment",
            value="Assessment files could not be loaded. A basic fallback assessment is available.",
            inline=False
        )
    embed.set_footer(text="Use /take <assessment> to begin")
    return embed


def session_started_embed(controller: SessionController) -> discord.Embed:
    assessment = controller.assessment
    resumed = controller.answered_count > 0
    embed = discord.Embed(
        title="🔄 Assessment Resumed" if resumed else "🎯 Assessment Started",
        description=f"**{assessment.title}**",
        color=SUCCESS_COLOR
    )
    if assessment.instructions:
        embed.add_field(name="📝 Instructions", value=_clip(assessment.instructions), inline=False)

    details = [
        f"Questions: {controller.total_questions}",
        f"Attempt: #{controller.attempt.attempt_number} of {assessment.max_attempts}",
    ]
    if assessment.is_timed:
        details.append(f"Time limit: {assessment.time_limit_minutes} minutes")
    if assessment.passing_score is not None:
        details.append(f"Passing score: {assessment.passing_score:g}%")
    if resumed:
        details.append(f"Saved answers: {controller.answered_count}")
    embed.add_field(name="📊 Details", value="\n".join(details), inline=False)
    return embed


def _question_body(question: Question) -> Optional[str]:
    data = question.data
    if question.type == QuestionType.MULTIPLE_CHOICE:
        return "\n".join(f"`{option.id}` {option.text}" for option in data.options)
    if question.type == QuestionType.TRUE_FALSE:
        return "`true` or `false`"
    if question.type == QuestionType.FILL_BLANK:
        return "Blanks: " + ", ".join(f"`{blank.id}`" for blank in data.blanks)
    if question.type == QuestionType.MATCHING:
        lefts = "\n".join(f"`{pair.id}` {pair.left}" for pair in data.pairs)
        rights = ", ".join(sorted(pair.right for pair in data.pairs))
        return f"{lefts}\n\nMatch with: {rights}"
    if question.type == QuestionType.CODE and data.starter_code:
        return f"```{data.language}\n{data.starter_code}\n```"
    return None


def question_embed(controller: SessionController) -> discord.Embed:
    """Render the current question with the learner's answer, timer and progress."""
    question = controller.current_question
    remaining = controller.time_remaining
    embed = discord.Embed(
        title=f"Question {controller.current_index + 1} of {controller.total_questions}",
        description=_clip(question.text, 4096),
        color=timer_color(remaining, controller.settings.warning_threshold)
    )

    body = _question_body(question)
    if body:
        embed.add_field(name="Options" if question.type == QuestionType.MULTIPLE_CHOICE else "Format",
                        value=_clip(body), inline=False)

    answer = controller.get_answer(question.id)
    answer_text = answer.answer_text if answer is not None and not answer.is_empty else None
    embed.add_field(name="✍️ Your Answer", value=_clip(answer_text) if answer_text else "*Not answered*", inline=False)

    limit = views.essay_limit(question)
    if limit is not None:
        counter = views.word_count_label(answer_text, limit) + " words"
        if views.is_over_word_limit(answer_text, limit):
            counter += " ⚠️ over the suggested length"
        embed.add_field(name="📏 Word Count", value=counter, inline=True)

    embed.add_field(name="🏅 Points", value=f"{question.points:g}", inline=True)

    if remaining is not None:
        prefix = "⚠️ " if controller.is_time_warning else ""
        embed.add_field(name="⏱️ Time Remaining", value=f"{prefix}{views.format_time(remaining)}", inline=True)

    progress = f"{views.progress_bar(controller.progress_percent)} {controller.answered_count}/{controller.total_questions} answered"
    warning = views.unanswered_warning(controller.unanswered_count)
    if warning:
        progress += f" ({warning})"
    embed.add_field(name="📊 Progress", value=progress, inline=False)

    if controller.is_last_question:
        embed.set_footer(text="Last question. Use /submit when you are done.")
    else:
        embed.set_footer(text="Use /answer to respond, /next to continue")
    return embed


def confirmation_embed(confirmation: SubmitConfirmation) -> discord.Embed:
    embed = discord.Embed(
        title="⚠️ Submit Assessment?",
        description=views.unanswered_message(confirmation.unanswered),
        color=WARNING_COLOR
    )
    embed.add_field(
        name="Unanswered",
        value=f"{views.unanswered_warning(confirmation.unanswered)} of {confirmation.total}",
        inline=False
    )
    embed.set_footer(text="Use /submit confirm:true to submit anyway, or keep answering")
    return embed


def exit_warning_embed() -> discord.Embed:
    return warning_embed(
        "You have answers that have not been saved yet. Leaving now discards them.\n"
        "Use `/exit confirm:true` to leave anyway.",
        "⚠️ Unsaved Answers"
    )


def results_embed(report: views.ResultsReport) -> discord.Embed:
    """Render a results report."""
    if not report.scored:
        embed = discord.Embed(
            title="📤 Assessment Submitted",
            description=f"**{report.title}**\nYour answers were submitted and will be graded by an instructor.",
            color=INFO_COLOR
        )
        embed.add_field(name="⏱️ Time Spent", value=report.time_spent, inline=True)
        embed.add_field(name="✍️ Answered", value=f"{report.answered}/{report.total_questions}", inline=True)
        return embed

    embed = discord.Embed(
        title="🏆 Assessment Complete!",
        description=f"**{report.title}**",
        color=BADGE_COLORS.get(report.badge, INFO_COLOR)
    )
    if report.timed_out:
        embed.description += "\n⏰ Time ran out, your answers were submitted automatically."

    embed.add_field(
        name=f"Your Score: {report.badge}",
        value=(
            f"**{report.percent}%** ({report.score:g} out of {report.total_points:g} points)\n"
            f"{views.progress_bar(report.percent)}"
        ),
        inline=False
    )
    embed.add_field(name="⏱️ Time Spent", value=report.time_spent, inline=True)
    embed.add_field(name="✍️ Answered", value=f"{report.answered}/{report.total_questions}", inline=True)
    if report.passed is not None:
        embed.add_field(
            name="Result",
            value=("✅ Passed" if report.passed else "❌ Not passed") + f" (passing score {report.passing_score:g}%)",
            inline=True
        )

    if report.skills:
        skill_lines = [
            f"**{row.skill}**: {row.percent}% ({row.correct} out of {row.total} correct)"
            for row in report.skills
        ]
        embed.add_field(name="📈 Skill Breakdown", value=_clip("\n".join(skill_lines)), inline=False)

    if report.recommendations:
        embed.add_field(name="📚 Recommendations", value=_clip("\n".join(report.recommendations)), inline=False)

    review_lines = []
    status_icons = {"correct": "✅", "incorrect": "❌", "unanswered": "⬜", "pending review": "📝"}
    for row in report.review:
        line = f"{status_icons[row.status]} Q{row.number}: {_clip(row.answer_text, 60)}"
        if row.correct_answer and row.status != "correct":
            line += f" (correct: {_clip(row.correct_answer, 60)})"
        review_lines.append(line)
    if review_lines:
        embed.add_field(name="🔎 Review", value=_clip("\n".join(review_lines)), inline=False)

    return embed


def status_embed(controller: SessionController) -> discord.Embed:
    progress = controller.get_session_progress()
    state = controller.status
    colors = {
        SessionState.IN_PROGRESS: SUCCESS_COLOR,
        SessionState.SUBMITTING: WARNING_COLOR,
        SessionState.ERROR: ERROR_COLOR,
    }
    embed = discord.Embed(
        title="📊 Assessment Status",
        description=f"**{controller.assessment.title}**" if controller.assessment else controller.assessment_id,
        color=colors.get(state, INFO_COLOR)
    )
    embed.add_field(name="State", value=state.value.replace("_", " ").title(), inline=True)

    if controller.total_questions:
        embed.add_field(
            name="Question",
            value=f"{progress['current_index'] + 1} of {progress['total_questions']}",
            inline=True
        )
        embed.add_field(
            name="Progress",
            value=f"{views.progress_bar(progress['progress_percent'])} {progress['progress_percent']:.0f}%",
            inline=False
        )
    if progress['time_remaining'] is not None:
        embed.add_field(name="⏱️ Time Remaining", value=views.format_time(progress['time_remaining']), inline=True)
    if progress['has_unsaved_changes']:
        embed.add_field(name="💾 Saving", value="Some answers are not saved yet", inline=True)
    if progress['error']:
        embed.add_field(name="❌ Error", value=_clip(progress['error']), inline=False)
    return embed
