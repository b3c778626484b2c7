"""
Unit tests for ConfigManager class.
"""
import logging
import tempfile
import unittest

from assessment_session.config_manager import ConfigManager
from assessment_session.models import SessionSettings


class TestConfigManager(unittest.TestCase):
    """Test cases for ConfigManager functionality."""

    def setUp(self):
        """Set up test fixtures before each test method."""
        self.config_manager = ConfigManager()

        # Suppress logging during tests
        logging.disable(logging.CRITICAL)

    def tearDown(self):
        """Clean up after each test method."""
        logging.disable(logging.NOTSET)

    def test_initialization_with_defaults(self):
        """Test that ConfigManager initializes with correct default values."""
        settings = self.config_manager.get_session_settings()

        self.assertEqual(settings, SessionSettings())
        self.assertEqual(settings.autosave_delay, 2.0)
        self.assertEqual(settings.warning_threshold, 300)
        self.assertTrue(settings.confirm_unanswered)
        self.assertEqual(self.config_manager.get_assessment_directory(), "./assessments/")
        self.assertIsNone(self.config_manager.get_attempts_directory())

    def test_session_settings_are_copies(self):
        settings = self.config_manager.get_session_settings()
        settings.autosave_delay = 25
        self.assertEqual(self.config_manager.get_autosave_delay(), 2.0)

    def test_set_autosave_delay(self):
        result = self.config_manager.set_autosave_delay(0.5)
        self.assertTrue(result['success'])
        self.assertIn("0.5", result['user_message'])
        self.assertEqual(self.config_manager.get_autosave_delay(), 0.5)

    def test_set_autosave_delay_out_of_range(self):
        for value in (0.01, 31, "2", True, None):
            with self.subTest(value=value):
                result = self.config_manager.set_autosave_delay(value)
                self.assertFalse(result['success'])
                self.assertIn('error', result)
        self.assertEqual(self.config_manager.get_autosave_delay(), 2.0)

    def test_set_warning_threshold(self):
        self.assertTrue(self.config_manager.set_warning_threshold(0)['success'])
        self.assertTrue(self.config_manager.set_warning_threshold(3600)['success'])
        self.assertEqual(self.config_manager.get_warning_threshold(), 3600)

    def test_set_warning_threshold_rejects_non_integers(self):
        for value in (12.5, 3601, -1, False):
            with self.subTest(value=value):
                self.assertFalse(self.config_manager.set_warning_threshold(value)['success'])
        self.assertEqual(self.config_manager.get_warning_threshold(), 300)

    def test_set_tick_interval(self):
        self.assertTrue(self.config_manager.set_tick_interval(0.5)['success'])
        self.assertEqual(self.config_manager.get_tick_interval(), 0.5)
        self.assertFalse(self.config_manager.set_tick_interval(0)['success'])
        self.assertFalse(self.config_manager.set_tick_interval(11)['success'])

    def test_set_confirm_unanswered(self):
        result = self.config_manager.set_confirm_unanswered(False)
        self.assertTrue(result['success'])
        self.assertIn("disabled", result['message'])
        self.assertFalse(self.config_manager.get_confirm_unanswered())
        self.assertFalse(self.config_manager.set_confirm_unanswered("no")['success'])

    def test_set_assessment_directory(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            result = self.config_manager.set_assessment_directory(temp_dir)
            self.assertTrue(result['success'])
            self.assertTrue(self.config_manager.get_assessment_directory().endswith(temp_dir.rstrip('/').split('/')[-1]))

    def test_set_assessment_directory_invalid(self):
        for value in ("", "   ", 42, "/etc/assessments"):
            with self.subTest(value=value):
                self.assertFalse(self.config_manager.set_assessment_directory(value)['success'])
        self.assertEqual(self.config_manager.get_assessment_directory(), "./assessments/")

    def test_set_attempts_directory_none_clears(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            self.assertTrue(self.config_manager.set_attempts_directory(temp_dir)['success'])
            self.assertIsNotNone(self.config_manager.get_attempts_directory())
        self.assertTrue(self.config_manager.set_attempts_directory(None)['success'])
        self.assertIsNone(self.config_manager.get_attempts_directory())

    def test_apply_config_collects_errors(self):
        result = self.config_manager.apply_config({
            'autosave_delay': 1.5,
            'warning_threshold': "soon",
            'confirm_unanswered': False,
            'unknown_key': 1,
        })
        self.assertFalse(result['success'])
        self.assertEqual(len(result['errors']), 1)
        self.assertTrue(result['errors'][0].startswith("warning_threshold"))

        settings = self.config_manager.get_session_settings()
        self.assertEqual(settings.autosave_delay, 1.5)
        self.assertEqual(settings.warning_threshold, 300)
        self.assertFalse(settings.confirm_unanswered)

    def test_apply_empty_config(self):
        self.assertEqual(self.config_manager.apply_config({}), {'success': True, 'errors': []})

    def test_reset_to_defaults(self):
        self.config_manager.set_autosave_delay(5)
        self.config_manager.set_confirm_unanswered(False)
        self.config_manager.reset_to_defaults()
        self.assertEqual(self.config_manager.get_session_settings(), SessionSettings())

    def test_validate_settings(self):
        self.assertTrue(self.config_manager.validate_settings()['valid'])

        # Bypass the setters to simulate a corrupted state
        self.config_manager._settings.tick_interval = 0
        validation = self.config_manager.validate_settings()
        self.assertFalse(validation['valid'])
        self.assertIn("Invalid tick interval: 0", validation['issues'])
        self.assertEqual(len(self.config_manager.get_user_friendly_validation_errors()), 1)

    def test_health_check_warns_on_long_autosave_delay(self):
        self.config_manager.set_autosave_delay(20)
        health = self.config_manager.get_configuration_health_check()
        self.assertTrue(any("auto-save delay" in warning for warning in health['warnings']))

    def test_settings_summary(self):
        summary = self.config_manager.get_settings_summary()
        self.assertIn("Auto-save delay: 2.0 seconds", summary)
        self.assertIn("Attempts Directory: in memory", summary)


if __name__ == '__main__':
    unittest.main()
