"""
Unit tests for ResponseStore dirty tracking.
"""
import unittest

from assessment_session.models import Answer
from assessment_session.response_store import ResponseStore


class TestResponseStore(unittest.TestCase):

    def setUp(self):
        self.store = ResponseStore()

    def test_set_marks_dirty(self):
        self.store.set("q1", Answer("q1", "a"))
        self.assertTrue(self.store.is_dirty("q1"))
        self.assertTrue(self.store.has_unsaved_changes)
        self.assertEqual(self.store.answered_count(), 1)

    def test_mark_saved_confirms_current_version(self):
        version = self.store.set("q1", Answer("q1", "a"))
        self.assertTrue(self.store.mark_saved("q1", version))
        self.assertFalse(self.store.has_unsaved_changes)

    def test_stale_confirmation_keeps_newer_edit_dirty(self):
        first = self.store.set("q1", Answer("q1", "a"))
        self.store.set("q1", Answer("q1", "ab"))
        self.assertFalse(self.store.mark_saved("q1", first))
        self.assertTrue(self.store.is_dirty("q1"))
        self.assertEqual(self.store.dirty_entries()[0][1].answer_text, "ab")

    def test_empty_answer_not_counted(self):
        self.store.set("q1", Answer("q1", "  "))
        self.assertFalse(self.store.is_answered("q1"))
        self.assertEqual(self.store.answered_count(), 0)

    def test_mismatched_key_rejected(self):
        with self.assertRaises(ValueError):
            self.store.set("q1", Answer("q2", "a"))

    def test_loaded_answers_are_clean(self):
        self.store.load([Answer("q1", "a"), Answer("q2", "b")])
        self.assertEqual(len(self.store), 2)
        self.assertFalse(self.store.has_unsaved_changes)

    def test_view_is_read_only(self):
        self.store.set("q1", Answer("q1", "a"))
        view = self.store.view()
        with self.assertRaises(TypeError):
            view["q2"] = Answer("q2", "b")
        self.store.set("q2", Answer("q2", "b"))
        self.assertIn("q2", view)


if __name__ == '__main__':
    unittest.main()
