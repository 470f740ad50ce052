import unittest
from unittest.mock import patch

from backend.db import InMemoryDbClient, IssueRecord, UserRecord
from backend.notifications import InMemoryPushClient
from backend.queue import InMemoryTriageQueue
from backend.storage import InMemoryStorageClient
from backend.worker import process_next
from shared.types import IssuePriority, UserRole
from triage import assignment, automation

TOKEN = "ExponentPushToken[admin]"


@patch("models.api_config.DEFAULT_API_KEY", None)
@patch("backend.worker.get_settings")
class WorkerTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.queue = InMemoryTriageQueue()
        self.storage = InMemoryStorageClient()
        self.push = InMemoryPushClient()
        self.db.users["citizen-1"] = UserRecord(uid="citizen-1")
        self.db.users["admin-1"] = UserRecord(uid="admin-1", role=UserRole.ADMIN, push_token=TOKEN)

    def _settings(self, mock_settings):
        mock_settings.return_value = type(
            "Settings", (), {"use_in_memory_backends": True, "gemini_api_key": None}
        )()

    def _process(self):
        return process_next(
            db=self.db, queue=self.queue, storage=self.storage, push=self.push, block=False
        )

    def _report(self, **kwargs):
        values = {
            "title": "Water pipe burst",
            "description": "Water leak flooding the lane",
            "category": "Other",
            "reported_by_id": "citizen-1",
            "location": {"latitude": 28.6139, "longitude": 77.2090},
        }
        values.update(kwargs)
        issue = self.db.create_issue(IssueRecord(**values))
        self.queue.enqueue(issue.issue_id)
        return issue

    def test_process_triages_and_assigns(self, mock_settings):
        self._settings(mock_settings)
        assignment.seed_default_rules(self.db)
        automation.seed_default_automation_rules(self.db)
        issue = self._report()

        self.assertTrue(self._process())

        updated = self.db.get_issue(issue.issue_id)
        self.assertEqual(updated.category, "Water Leak")
        self.assertEqual(updated.priority, IssuePriority.CRITICAL)
        self.assertIsNotNone(updated.sentiment_score)
        self.assertEqual(updated.assigned_department, "Water & Sanitation")

        # Reporter hears about the assignment; admins about the new issue.
        reporter_titles = [n.title for n in self.db.list_notifications("citizen-1")]
        self.assertIn("Issue Assigned", reporter_titles)
        self.assertIn("New Issue Reported", [m["title"] for m in self.push.sent])

    def test_process_flags_duplicate(self, mock_settings):
        self._settings(mock_settings)
        first = self._report(category="Water Leak")
        self.assertTrue(self._process())
        second = self._report(category="Water Leak")
        self.assertTrue(self._process())

        flagged = self.db.get_issue(second.issue_id)
        self.assertEqual(flagged.duplicate_of_id, first.issue_id)
        self.assertGreaterEqual(flagged.duplicate_score, 0.6)
        self.assertIsNone(self.db.get_issue(first.issue_id).duplicate_of_id)

    def test_process_once_no_jobs(self, mock_settings):
        self._settings(mock_settings)
        self.assertFalse(self._process())

    def test_process_unknown_issue(self, mock_settings):
        self._settings(mock_settings)
        self.queue.enqueue("missing")
        self.assertFalse(self._process())


if __name__ == "__main__":
    unittest.main()
