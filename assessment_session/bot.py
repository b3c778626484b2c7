import logging
import os
from typing import Dict, Optional

import discord
from discord import app_commands
from discord.ext import commands

from .config_manager import ConfigManager
from .data_manager import DataManager
from .embeds import (
    assessments_embed,
    confirmation_embed,
    error_embed,
    exit_warning_embed,
    help_embed,
    info_embed,
    question_embed,
    results_embed,
    session_started_embed,
    status_embed,
    warning_embed,
)
from .models import SubmitTrigger
from .session_controller import InvalidSessionStateError, SessionController, SessionState
from .session_registry import SessionConflictError, SessionNotFoundError, SessionRegistry
from .views import build_results_report

logger = logging.getLogger(__name__)


class AssessmentBot(commands.Bot):
    """Discord bot for taking assessments"""

    def __init__(self, config=None):
        intents = discord.Intents.none()
        intents.guilds = True  # Required for slash commands

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.config_manager: Optional[ConfigManager] = None
        self.data_manager: Optional[DataManager] = None
        self.registry: Optional[SessionRegistry] = None
        # Channel each learner started their session in, for timeout results
        self._session_channels: Dict[str, discord.abc.Messageable] = {}

    async def setup_hook(self):
        """Called when the bot is starting up"""
        logger.info("Setting up bot components...")

        self.config_manager = ConfigManager()
        self.apply_configuration()

        self.data_manager = DataManager(
            self.config_manager.get_assessment_directory(),
            self.config_manager.get_attempts_directory()
        )
        self.load_assessment_data()

        self.registry = SessionRegistry(self.data_manager, self.config_manager.get_session_settings)
        self.setup_commands()

        logger.info("Bot setup completed successfully")

    def apply_configuration(self):
        """Apply the session section of the configuration file."""
        result = self.config_manager.apply_config(self.app_config.get('session', {}))
        for error in result['errors']:
            logger.warning(f"Ignoring invalid setting {error}")

    def load_assessment_data(self):
        loaded = self.data_manager.load_assessment_files()
        logger.info(f"Loaded {len(loaded)} assessments from {self.data_manager.assessment_directory}")
        self.data_manager.load_attempts()
        for error in self.data_manager.get_load_errors():
            logger.warning(f"Assessment loading issue: {error}")

    def setup_commands(self):
        """Register all slash commands"""

        @self.tree.command(name="help", description="Display available commands and their descriptions")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="assessments", description="List the assessments you can take")
        async def assessments_command(interaction: discord.Interaction):
            await self.handle_assessments(interaction)

        @self.tree.command(name="take", description="Start or resume an assessment")
        @app_commands.describe(assessment="Id of the assessment, see /assessments")
        async def take_command(interaction: discord.Interaction, assessment: str):
            await self.handle_take(interaction, assessment)

        @self.tree.command(name="question", description="Show the current question")
        async def question_command(interaction: discord.Interaction):
            await self.handle_question(interaction)

        @self.tree.command(name="goto", description="Jump to a question by number")
        async def goto_command(interaction: discord.Interaction, number: int):
            await self.handle_goto(interaction, number)

        @self.tree.command(name="next", description="Go to the next question")
        async def next_command(interaction: discord.Interaction):
            await self.handle_step(interaction, forward=True)

        @self.tree.command(name="previous", description="Go to the previous question")
        async def previous_command(interaction: discord.Interaction):
            await self.handle_step(interaction, forward=False)

        @self.tree.command(name="answer", description="Answer the current question")
        async def answer_command(interaction: discord.Interaction, value: str):
            await self.handle_answer(interaction, value)

        @self.tree.command(name="submit", description="Submit your answers")
        async def submit_command(interaction: discord.Interaction, confirm: bool = False):
            await self.handle_submit(interaction, confirm)

        @self.tree.command(name="exit", description="Leave the assessment without submitting")
        async def exit_command(interaction: discord.Interaction, confirm: bool = False):
            await self.handle_exit(interaction, confirm)

        @self.tree.command(name="status", description="Show your progress and time remaining")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        if self.registry is not None:
            await self.registry.shutdown()
        await super().close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def learner_id(interaction: discord.Interaction) -> str:
        return str(interaction.user.id)

    def _require_in_progress(self, interaction: discord.Interaction) -> SessionController:
        controller = self.registry.require_session(self.learner_id(interaction))
        controller.ensure_in_progress()
        return controller

    async def _send(self, interaction: discord.Interaction, embed: discord.Embed):
        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=True)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=True)

    async def _send_session_error(self, interaction: discord.Interaction, error: Exception):
        if isinstance(error, SessionNotFoundError):
            await self.send_error_response(
                interaction, "You are not taking an assessment. Use /take to start one.", "❌ No Active Assessment"
            )
        elif isinstance(error, InvalidSessionStateError):
            controller = self.registry.get_session(self.learner_id(interaction))
            if controller is not None and controller.status == SessionState.SUBMITTING:
                await self.send_warning_response(
                    interaction,
                    "Your submission did not go through. Use /submit to try again.",
                    "⚠️ Submission Pending"
                )
            else:
                await self.send_error_response(
                    interaction, "Your assessment is no longer in progress. Use /take to start a new one.",
                    "❌ Assessment Finished"
                )
        else:
            raise error

    async def _on_session_submitted(self, controller: SessionController):
        """Release the learner's channel and post timeout results to it."""
        channel = self._session_channels.pop(controller.learner_id, None)
        if controller.result.trigger != SubmitTrigger.TIMEOUT:
            return
        if channel is None:
            logger.warning(f"No channel recorded for learner {controller.learner_id}, timeout results not posted")
            return
        report = build_results_report(controller.assessment, controller.questions, controller.result)
        try:
            await channel.send(content=f"<@{controller.learner_id}>", embed=results_embed(report))
        except discord.HTTPException as e:
            logger.error(f"Failed to post timeout results for learner {controller.learner_id}: {e}")

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------

    async def handle_help(self, interaction: discord.Interaction):
        await interaction.response.send_message(embed=help_embed(), ephemeral=True)

    async def handle_assessments(self, interaction: discord.Interaction):
        try:
            assessments = await self.data_manager.list_assessments()
            embed = assessments_embed(assessments, self.data_manager.fallback_assessment_created)
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except Exception as e:
            logger.error(f"Error in assessments command: {e}")
            await self.send_error_response(interaction, "Failed to list assessments")

    async def handle_take(self, interaction: discord.Interaction, assessment_id: str):
        learner_id = self.learner_id(interaction)
        try:
            await self.registry.cleanup_finished_sessions()

            existing = self.registry.get_session(learner_id)
            if existing is not None and existing.assessment_id == assessment_id and not existing.is_finished:
                await self.handle_question(interaction)
                return

            if not self.data_manager.assessment_exists(assessment_id):
                available = ", ".join(f"`{name}`" for name in self.data_manager.get_available_assessments())
                await self.send_error_response(
                    interaction,
                    f"Assessment '{assessment_id}' not found. Available: {available or 'none'}",
                    "❌ Unknown Assessment"
                )
                return

            controller = self.registry.create_session(
                learner_id, assessment_id, on_submitted=self._on_session_submitted
            )
            self._session_channels[learner_id] = interaction.channel
            await interaction.response.defer(ephemeral=True, thinking=True)

            if not await controller.load():
                await self.registry.end_session(learner_id)
                self._session_channels.pop(learner_id, None)
                await self.send_error_response(interaction, str(controller.error), "❌ Could Not Start Assessment")
                return

            controller.begin()
            await interaction.followup.send(embeds=[session_started_embed(controller), question_embed(controller)], ephemeral=True)

        except SessionConflictError:
            current = self.registry.get_session(learner_id)
            await self.send_warning_response(
                interaction,
                f"You are already taking '{current.assessment_id}'. Submit it or use /exit first.",
                "⚠️ Assessment In Progress"
            )
        except Exception as e:
            logger.error(f"Error in take command: {e}")
            await self.send_error_response(interaction, "Failed to start the assessment")

    async def handle_question(self, interaction: discord.Interaction):
        try:
            controller = self._require_in_progress(interaction)
            await self._send(interaction, question_embed(controller))
        except (SessionNotFoundError, InvalidSessionStateError) as e:
            await self._send_session_error(interaction, e)

    async def handle_goto(self, interaction: discord.Interaction, number: int):
        try:
            controller = self._require_in_progress(interaction)
            if not controller.navigate(number - 1):
                await self.send_error_response(
                    interaction,
                    f"Question {number} does not exist. Choose 1 to {controller.total_questions}.",
                    "❌ Invalid Question"
                )
                return
            await self._send(interaction, question_embed(controller))
        except (SessionNotFoundError, InvalidSessionStateError) as e:
            await self._send_session_error(interaction, e)

    async def handle_step(self, interaction: discord.Interaction, forward: bool):
        try:
            controller = self._require_in_progress(interaction)
            moved = controller.next_question() if forward else controller.previous_question()
            if not moved:
                edge = "last" if forward else "first"
                await self.send_info_response(interaction, f"You are already on the {edge} question.")
                return
            await self._send(interaction, question_embed(controller))
        except (SessionNotFoundError, InvalidSessionStateError) as e:
            await self._send_session_error(interaction, e)

    async def handle_answer(self, interaction: discord.Interaction, value: str):
        try:
            controller = self._require_in_progress(interaction)
            controller.answer_current(value)
            await self._send(interaction, question_embed(controller))
        except (SessionNotFoundError, InvalidSessionStateError) as e:
            await self._send_session_error(interaction, e)
        except ValueError as e:
            await self.send_error_response(interaction, str(e), "❌ Invalid Answer")

    async def handle_submit(self, interaction: discord.Interaction, confirm: bool):
        learner_id = self.learner_id(interaction)
        try:
            controller = self.registry.require_session(learner_id)
            if controller.status not in (SessionState.IN_PROGRESS, SessionState.SUBMITTING):
                controller.ensure_in_progress()

            await interaction.response.defer(ephemeral=True, thinking=True)
            if confirm or controller.status == SessionState.SUBMITTING:
                await controller.confirm_submit()
            else:
                confirmation = await controller.request_submit()
                if confirmation is not None:
                    await interaction.followup.send(embed=confirmation_embed(confirmation), ephemeral=True)
                    return

            if controller.status != SessionState.SUBMITTED:
                message = str(controller.error) if controller.error else "The submission did not complete."
                await self.send_error_response(
                    interaction, f"{message}\nYour answers are kept. Use /submit to try again.", "❌ Submission Failed"
                )
                return

            report = build_results_report(controller.assessment, controller.questions, controller.result)
            await interaction.followup.send(embed=results_embed(report), ephemeral=True)

        except (SessionNotFoundError, InvalidSessionStateError) as e:
            await self._send_session_error(interaction, e)
        except Exception as e:
            logger.error(f"Error in submit command: {e}")
            await self.send_error_response(interaction, "Failed to submit the assessment")

    async def handle_exit(self, interaction: discord.Interaction, confirm: bool):
        learner_id = self.learner_id(interaction)
        try:
            controller = self.registry.require_session(learner_id)
            left = controller.confirm_exit() if confirm else controller.request_exit()
            if not left:
                if controller.exit_warning:
                    await self._send(interaction, exit_warning_embed())
                else:
                    await self.send_warning_response(interaction, "Your submission is still being processed.")
                return

            await self.registry.end_session(learner_id)
            self._session_channels.pop(learner_id, None)
            await self.send_info_response(interaction, "You left the assessment. Use /take to come back.", "👋 Assessment Closed")
        except SessionNotFoundError as e:
            await self._send_session_error(interaction, e)

    async def handle_status(self, interaction: discord.Interaction):
        try:
            controller = self.registry.require_session(self.learner_id(interaction))
            await self._send(interaction, status_embed(controller))
        except SessionNotFoundError as e:
            await self._send_session_error(interaction, e)

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        try:
            await self._send(interaction, error_embed(message, title))
        except discord.HTTPException:
            logger.error("Failed to send error response to user")

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send formatted info response to user"""
        try:
            await self._send(interaction, info_embed(message, title))
        except discord.HTTPException:
            logger.error("Failed to send info response to user")

    async def send_warning_response(self, interaction: discord.Interaction, message: str, title: str = "⚠️ Warning"):
        """Send formatted warning response to user"""
        try:
            await self._send(interaction, warning_embed(message, title))
        except discord.HTTPException:
            logger.error("Failed to send warning response to user")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = AssessmentBot(config)

    try:
        logger.info("Starting Discord Assessment Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
