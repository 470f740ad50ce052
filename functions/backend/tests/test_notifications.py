import unittest
from unittest.mock import MagicMock

import requests

from backend.db import InMemoryDbClient, IssueRecord, UserRecord
from backend.notifications import (
    EXPO_BATCH_SIZE,
    ExpoPushClient,
    InMemoryPushClient,
    NotificationPayload,
    NotificationService,
    SendResult,
    automatic_triggers,
    is_valid_push_token,
)
from shared.types import IssuePriority, IssueStatus, UserRole


def _issue(**kwargs):
    return IssueRecord(
        title="Pothole", description="", category="Roads", reported_by_id="citizen-1", **kwargs
    )


class PushTokenTests(unittest.TestCase):
    def test_only_expo_tokens_are_valid(self):
        self.assertTrue(is_valid_push_token("ExponentPushToken[xyz]"))
        self.assertFalse(is_valid_push_token("fcm:abc"))
        self.assertFalse(is_valid_push_token(None))


class SendResultTests(unittest.TestCase):
    def test_status(self):
        self.assertEqual(SendResult(success_count=2).status, "sent")
        self.assertEqual(SendResult(success_count=1, failure_count=1).status, "partial")
        self.assertEqual(SendResult(failure_count=1).status, "failed")


class ExpoPushClientTests(unittest.TestCase):
    def test_sends_in_batches(self):
        client = ExpoPushClient("https://push.example.test")
        client.session = MagicMock()
        client.session.post.return_value.json.side_effect = lambda: {
            "data": [{"status": "ok"}] * len(client.session.post.call_args.kwargs["json"])
        }

        messages = [{"to": f"ExponentPushToken[{i}]"} for i in range(EXPO_BATCH_SIZE + 5)]
        tickets = client.send(messages)

        self.assertEqual(client.session.post.call_count, 2)
        self.assertEqual(len(tickets), EXPO_BATCH_SIZE + 5)


class AutomaticTriggerTests(unittest.TestCase):
    def test_status_assignment_and_escalation(self):
        old = _issue()
        new = _issue(
            status=IssueStatus.RESOLVED,
            assigned_department="Public Works",
            priority=IssuePriority.CRITICAL,
        )
        self.assertEqual(
            automatic_triggers(old, new),
            ["status_resolved", "issue_assigned", "issue_escalated"],
        )

    def test_no_change(self):
        self.assertEqual(automatic_triggers(_issue(), _issue()), [])

    def test_priority_change_below_critical(self):
        self.assertEqual(automatic_triggers(_issue(), _issue(priority=IssuePriority.HIGH)), [])


class NotificationServiceTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.push = InMemoryPushClient()
        self.service = NotificationService(self.db, self.push)
        self.db.users["citizen-1"] = UserRecord(
            uid="citizen-1", push_token="ExponentPushToken[citizen]"
        )
        self.db.users["admin-1"] = UserRecord(uid="admin-1", role=UserRole.ADMIN)

    def test_send_to_users_records_everything(self):
        result = self.service.send_to_users(
            NotificationPayload(title="Hello", body="World", related_issue_id="issue-1"),
            self.db.list_users(),
        )

        self.assertTrue(result.success)
        self.assertEqual(result.success_count, 1)
        self.assertEqual(self.push.sent[0]["data"]["issueId"], "issue-1")
        self.assertEqual(self.db.count_unread_notifications("citizen-1"), 1)
        self.assertEqual(self.db.count_unread_notifications("admin-1"), 1)
        log = self.db.list_notification_logs()[0]
        self.assertEqual((log.recipient_count, log.status), (2, "sent"))

    def test_opted_out_user_gets_no_push(self):
        self.db.update_user("citizen-1", notifications_enabled=False)
        result = self.service.send_to_users(
            NotificationPayload(title="Hello", body="World"), self.db.list_users()
        )
        self.assertEqual(self.push.sent, [])
        self.assertEqual(result.status, "failed")
        self.assertEqual(self.db.count_unread_notifications("citizen-1"), 1)

    def test_push_failure_is_reported(self):
        self.service.push = MagicMock()
        self.service.push.send.side_effect = requests.ConnectionError("down")

        result = self.service.send_to_mobile_users("t", "b", ["ExponentPushToken[a]"])

        self.assertFalse(result.success)
        self.assertEqual(result.failure_count, 1)
        self.assertIn("down", result.errors[0])

    def test_bulk_and_broadcast_without_users(self):
        payload = NotificationPayload(title="t", body="b")
        self.assertEqual(self.service.send_bulk(payload, ["nobody"]).errors, ["No users found"])
        self.assertEqual(
            self.service.broadcast(payload, role=UserRole.MODERATOR).errors, ["No users found"]
        )

    def test_broadcast_by_role(self):
        self.service.broadcast(NotificationPayload(title="t", body="b"), role=UserRole.ADMIN)
        self.assertEqual(self.db.count_unread_notifications("admin-1"), 1)
        self.assertEqual(self.db.count_unread_notifications("citizen-1"), 0)

    def test_trigger_on_issue_update_respects_preferences(self):
        old = _issue()
        new = _issue(status=IssueStatus.IN_PROGRESS)

        self.assertEqual(self.service.trigger_on_issue_update(old, new), ["status_in_progress"])
        self.assertEqual(self.push.sent[0]["title"], "Issue In Progress")

        self.db.update_user("citizen-1", notification_preferences={"issue_updates": False})
        self.service.trigger_on_issue_update(old, new)
        self.assertEqual(len(self.push.sent), 1)


if __name__ == "__main__":
    unittest.main()
