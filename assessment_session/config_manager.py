"""
Configuration manager for assessment session settings.
"""
import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import SessionSettings


class ConfigManager:
    """Manages session settings and data directories."""

    # Default configuration values
    DEFAULT_AUTOSAVE_DELAY = 2.0
    DEFAULT_WARNING_THRESHOLD = 300
    DEFAULT_TICK_INTERVAL = 1.0
    DEFAULT_CONFIRM_UNANSWERED = True
    DEFAULT_ASSESSMENT_DIRECTORY = "./assessments/"
    DEFAULT_ATTEMPTS_DIRECTORY = None

    # Validation limits
    MIN_AUTOSAVE_DELAY = 0.1
    MAX_AUTOSAVE_DELAY = 30.0
    MIN_WARNING_THRESHOLD = 0
    MAX_WARNING_THRESHOLD = 3600  # 1 hour
    MIN_TICK_INTERVAL = 0.01
    MAX_TICK_INTERVAL = 10.0

    SYSTEM_DIRECTORIES = ['/bin', '/usr', '/etc', '/sys', '/proc', 'C:\\Windows', 'C:\\Program Files']

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._settings = SessionSettings()
        self._assessment_directory = self.DEFAULT_ASSESSMENT_DIRECTORY
        self._attempts_directory: Optional[str] = self.DEFAULT_ATTEMPTS_DIRECTORY

    def get_session_settings(self) -> SessionSettings:
        """Return a copy of the current session settings."""
        return replace(self._settings)

    def _reject(self, error_msg: str, user_message: str) -> Dict[str, Any]:
        self.logger.error(error_msg)
        return {
            'success': False,
            'error': error_msg,
            'user_message': user_message
        }

    def _validate_number(self, name: str, value: Any, minimum: float, maximum: float, unit: str = "seconds") -> Optional[Dict[str, Any]]:
        """Return a failure dict when ``value`` is not a number within range."""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return self._reject(
                f"{name} must be a number, got {type(value).__name__}",
                f"❌ Invalid input: Expected a number, got {type(value).__name__}"
            )
        if value < minimum:
            return self._reject(
                f"{name} must be at least {minimum} {unit}",
                f"❌ {name} too small: Minimum is {minimum} {unit}"
            )
        if value > maximum:
            return self._reject(
                f"{name} cannot exceed {maximum} {unit}",
                f"❌ {name} too large: Maximum is {maximum} {unit}"
            )
        return None

    def set_autosave_delay(self, delay: float) -> Dict[str, Any]:
        """
        Set how long answers must be idle before they are auto-saved.

        Args:
            delay: Debounce delay in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        failure = self._validate_number("Auto-save delay", delay, self.MIN_AUTOSAVE_DELAY, self.MAX_AUTOSAVE_DELAY)
        if failure:
            return failure

        self._settings.autosave_delay = float(delay)
        self.logger.info(f"Auto-save delay set to {delay} seconds")
        return {
            'success': True,
            'message': f"Auto-save delay set to {delay} seconds",
            'user_message': f"✅ Answers auto-save {delay} seconds after the last edit"
        }

    def get_autosave_delay(self) -> float:
        return self._settings.autosave_delay

    def set_warning_threshold(self, seconds: int) -> Dict[str, Any]:
        """
        Set the remaining time at which the timer switches to its warning state.

        Args:
            seconds: Threshold in whole seconds
        """
        if not isinstance(seconds, int) or isinstance(seconds, bool):
            return self._reject(
                f"Warning threshold must be an integer, got {type(seconds).__name__}",
                f"❌ Invalid input: Expected a whole number, got {type(seconds).__name__}"
            )
        failure = self._validate_number("Warning threshold", seconds, self.MIN_WARNING_THRESHOLD, self.MAX_WARNING_THRESHOLD)
        if failure:
            return failure

        self._settings.warning_threshold = seconds
        self.logger.info(f"Warning threshold set to {seconds} seconds")
        return {
            'success': True,
            'message': f"Warning threshold set to {seconds} seconds",
            'user_message': f"✅ Time warning shown with {seconds} seconds left"
        }

    def get_warning_threshold(self) -> int:
        return self._settings.warning_threshold

    def set_tick_interval(self, interval: float) -> Dict[str, Any]:
        failure = self._validate_number("Tick interval", interval, self.MIN_TICK_INTERVAL, self.MAX_TICK_INTERVAL)
        if failure:
            return failure

        self._settings.tick_interval = float(interval)
        self.logger.info(f"Tick interval set to {interval} seconds")
        return {
            'success': True,
            'message': f"Tick interval set to {interval} seconds",
            'user_message': f"✅ Timer ticks every {interval} seconds"
        }

    def get_tick_interval(self) -> float:
        return self._settings.tick_interval

    def set_confirm_unanswered(self, confirm: bool) -> Dict[str, Any]:
        """
        Set whether manual submission asks for confirmation first.

        Args:
            confirm: True to show the unanswered-question confirmation
        """
        if not isinstance(confirm, bool):
            return self._reject(
                f"Confirm unanswered must be a boolean, got {type(confirm).__name__}",
                f"❌ Invalid input: Expected true/false, got {type(confirm).__name__}"
            )

        self._settings.confirm_unanswered = confirm
        state = "enabled" if confirm else "disabled"
        self.logger.info(f"Submit confirmation {state}")
        return {
            'success': True,
            'message': f"Submit confirmation {state}",
            'user_message': f"✅ Submit confirmation {state}"
        }

    def get_confirm_unanswered(self) -> bool:
        return self._settings.confirm_unanswered

    def _validate_directory(self, directory: Any, label: str) -> Dict[str, Any]:
        if not isinstance(directory, str):
            return self._reject(
                f"{label} must be a string, got {type(directory).__name__}",
                f"❌ Invalid input: Expected a path string, got {type(directory).__name__}"
            )

        if not directory.strip():
            return self._reject(f"{label} cannot be empty", "❌ Directory path cannot be empty")

        try:
            normalized_path = str(Path(directory).resolve())
        except (OSError, ValueError) as e:
            return self._reject(f"Invalid directory path format: {e}", f"❌ Invalid path format: {directory}")

        if any(normalized_path.startswith(sys_dir) for sys_dir in self.SYSTEM_DIRECTORIES):
            return self._reject(
                f"Cannot use system directory: {normalized_path}",
                f"❌ Cannot use system directory: {directory}"
            )

        return {'success': True, 'path': normalized_path}

    def set_assessment_directory(self, directory: str) -> Dict[str, Any]:
        """
        Set the directory path for assessment files.

        Args:
            directory: Path to the assessment files directory

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        result = self._validate_directory(directory, "Assessment directory")
        if not result['success']:
            return result

        self._assessment_directory = result['path']
        self.logger.info(f"Assessment directory set to {result['path']}")
        return {
            'success': True,
            'message': f"Assessment directory set to {result['path']}",
            'user_message': f"✅ Assessment directory set to {result['path']}"
        }

    def get_assessment_directory(self) -> str:
        return self._assessment_directory

    def set_attempts_directory(self, directory: Optional[str]) -> Dict[str, Any]:
        """Set where submitted attempts are written. None keeps attempts in memory only."""
        if directory is None:
            self._attempts_directory = None
            self.logger.info("Attempts will be kept in memory only")
            return {
                'success': True,
                'message': "Attempts directory cleared",
                'user_message': "✅ Attempts will not be written to disk"
            }

        result = self._validate_directory(directory, "Attempts directory")
        if not result['success']:
            return result

        self._attempts_directory = result['path']
        self.logger.info(f"Attempts directory set to {result['path']}")
        return {
            'success': True,
            'message': f"Attempts directory set to {result['path']}",
            'user_message': f"✅ Attempts directory set to {result['path']}"
        }

    def get_attempts_directory(self) -> Optional[str]:
        return self._attempts_directory

    def apply_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply the ``session`` section of a loaded config file.

        Unknown keys are ignored. Invalid values leave the current setting in
        place and are reported in ``errors``.

        Returns:
            Dictionary with overall success and the list of failed settings
        """
        setters = {
            'autosave_delay': self.set_autosave_delay,
            'warning_threshold': self.set_warning_threshold,
            'tick_interval': self.set_tick_interval,
            'confirm_unanswered': self.set_confirm_unanswered,
            'assessment_directory': self.set_assessment_directory,
            'attempts_directory': self.set_attempts_directory,
        }

        errors = []
        for key, setter in setters.items():
            if key not in config:
                continue
            result = setter(config[key])
            if not result['success']:
                errors.append(f"{key}: {result['error']}")

        return {
            'success': not errors,
            'errors': errors
        }

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._settings = SessionSettings(
            autosave_delay=self.DEFAULT_AUTOSAVE_DELAY,
            warning_threshold=self.DEFAULT_WARNING_THRESHOLD,
            tick_interval=self.DEFAULT_TICK_INTERVAL,
            confirm_unanswered=self.DEFAULT_CONFIRM_UNANSWERED
        )
        self._assessment_directory = self.DEFAULT_ASSESSMENT_DIRECTORY
        self._attempts_directory = self.DEFAULT_ATTEMPTS_DIRECTORY
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }
        settings = self._settings

        if not self.MIN_AUTOSAVE_DELAY <= settings.autosave_delay <= self.MAX_AUTOSAVE_DELAY:
            validation_result["issues"].append(f"Invalid auto-save delay: {settings.autosave_delay}")

        if not self.MIN_WARNING_THRESHOLD <= settings.warning_threshold <= self.MAX_WARNING_THRESHOLD:
            validation_result["issues"].append(f"Invalid warning threshold: {settings.warning_threshold}")

        if not self.MIN_TICK_INTERVAL <= settings.tick_interval <= self.MAX_TICK_INTERVAL:
            validation_result["issues"].append(f"Invalid tick interval: {settings.tick_interval}")

        if not isinstance(settings.confirm_unanswered, bool):
            validation_result["issues"].append(f"Invalid confirm setting: {settings.confirm_unanswered}")

        if not isinstance(self._assessment_directory, str) or not self._assessment_directory.strip():
            validation_result["issues"].append(f"Invalid assessment directory: {self._assessment_directory}")

        validation_result["valid"] = not validation_result["issues"]
        return validation_result

    def get_settings_summary(self) -> str:
        """Human-readable summary of the current settings."""
        return (
            f"Session Settings:\n"
            f"• Auto-save delay: {self._settings.autosave_delay} seconds\n"
            f"• Time warning: {self._settings.warning_threshold} seconds left\n"
            f"• Confirm before submit: {'yes' if self._settings.confirm_unanswered else 'no'}\n"
            f"• Assessment Directory: {self._assessment_directory}\n"
            f"• Attempts Directory: {self._attempts_directory or 'in memory'}"
        )

    def get_configuration_health_check(self) -> Dict[str, Any]:
        """
        Check the configuration for errors and questionable values.

        Returns:
            Dictionary with health status and recommendations
        """
        health_check = {
            'healthy': True,
            'warnings': [],
            'errors': [],
            'recommendations': []
        }

        validation_result = self.validate_settings()
        if not validation_result['valid']:
            health_check['healthy'] = False
            health_check['errors'].extend(f"❌ {issue}" for issue in validation_result['issues'])

        assessment_dir = Path(self._assessment_directory)
        if not assessment_dir.exists():
            health_check['warnings'].append(
                f"⚠️ Assessment directory does not exist: {self._assessment_directory}"
            )
            health_check['recommendations'].append(
                "The assessment directory will be created automatically when loading assessment files."
            )
        elif not os.access(assessment_dir, os.R_OK):
            health_check['healthy'] = False
            health_check['errors'].append(f"❌ Cannot read assessment directory: {self._assessment_directory}")
            health_check['recommendations'].append("Check file permissions for the assessment directory.")

        if self._settings.autosave_delay > 10:
            health_check['warnings'].append(
                f"⚠️ Long auto-save delay ({self._settings.autosave_delay}s) risks losing answers on disconnect"
            )

        return health_check

    def get_user_friendly_validation_errors(self) -> List[str]:
        return [f"❌ Configuration Issue: {issue}" for issue in self.validate_settings()["issues"]]
