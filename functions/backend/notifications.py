"""
Push and in-app notifications.

Push delivery goes through the Expo push service, which fans out to FCM/APNs
for the citizen app. Every send also writes an in-app notification per target
user and one notification log entry for the admin portal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol, Sequence

import requests

from backend.db import (
    DbClient,
    IssueRecord,
    NotificationLogRecord,
    NotificationRecord,
    UserRecord,
)
from shared.constants import EXPO_TOKEN_PREFIX
from shared.types import (
    IssuePriority,
    IssueStatus,
    NotificationTarget,
    NotificationType,
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 15  # seconds
# Expo rejects requests with more than 100 messages.
EXPO_BATCH_SIZE = 100


@dataclass
class NotificationPayload:
    title: str
    body: str
    type: str = NotificationType.MANUAL
    target: str = NotificationTarget.INDIVIDUAL
    priority: str = "normal"
    related_issue_id: Optional[str] = None
    data: dict = field(default_factory=dict)
    sent_by: str = "admin"


@dataclass
class SendResult:
    success: bool = False
    success_count: int = 0
    failure_count: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        if self.success_count and self.failure_count:
            return "partial"
        if self.success_count:
            return "sent"
        return "failed"


class PushClient(Protocol):
    def send(self, messages: list[dict]) -> list[dict]:
        """Sends push messages and returns one ticket per message."""
        ...


class ExpoPushClient:
    """Sends messages through the Expo push HTTP API."""

    def __init__(self, url: str):
        self.url = url
        self.session = requests.Session()

    def send(self, messages: list[dict]) -> list[dict]:
        tickets: list[dict] = []
        for start in range(0, len(messages), EXPO_BATCH_SIZE):
            batch = messages[start : start + EXPO_BATCH_SIZE]
            response = self.session.post(
                self.url,
                json=batch,
                headers={
                    "Accept": "application/json",
                    "Accept-Encoding": "gzip, deflate",
                    "Content-Type": "application/json",
                },
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
            data = response.json().get("data")
            tickets.extend(data if isinstance(data, list) else [data])
        return tickets


class InMemoryPushClient:
    """Records messages instead of sending them."""

    def __init__(self):
        self.sent: list[dict] = []

    def reset(self) -> None:
        self.sent.clear()

    def send(self, messages: list[dict]) -> list[dict]:
        self.sent.extend(messages)
        return [{"status": "ok", "id": str(i)} for i, _ in enumerate(messages)]


def is_valid_push_token(token: Optional[str]) -> bool:
    return bool(token) and token.startswith(EXPO_TOKEN_PREFIX)


def wants_issue_updates(user: UserRecord) -> bool:
    if not user.notifications_enabled:
        return False
    return (user.notification_preferences or {}).get("issue_updates", True)


AUTOMATIC_TEMPLATES = {
    "issue_assigned": (
        "Issue Assigned",
        'Issue "{title}" has been assigned to {department}.',
    ),
    "status_in_progress": (
        "Issue In Progress",
        'Your reported issue "{title}" is now being worked on.',
    ),
    "status_resolved": (
        "Issue Resolved",
        'Great news! Issue "{title}" has been resolved.',
    ),
    "issue_escalated": (
        "Issue Escalated",
        'Issue "{title}" has been marked as {priority} priority.',
    ),
}


def automatic_triggers(old: IssueRecord, new: IssueRecord) -> list[str]:
    """Names the automatic reporter notifications implied by an issue change."""
    fired: list[str] = []
    if old.status != new.status:
        if new.status == IssueStatus.IN_PROGRESS:
            fired.append("status_in_progress")
        elif new.status == IssueStatus.RESOLVED:
            fired.append("status_resolved")
    if old.assigned_department != new.assigned_department and new.assigned_department:
        fired.append("issue_assigned")
    if old.priority != new.priority and new.priority == IssuePriority.CRITICAL:
        fired.append("issue_escalated")
    return fired


def automatic_message(trigger: str, issue: IssueRecord) -> Optional[tuple[str, str]]:
    template = AUTOMATIC_TEMPLATES.get(trigger)
    if not template:
        return None
    title, body = template
    return title, body.format(
        title=issue.title or "Unknown",
        department=issue.assigned_department or "a department",
        priority=issue.priority or "high",
    )


class NotificationService:
    def __init__(self, db: DbClient, push: PushClient):
        self.db = db
        self.push = push

    def send_to_mobile_users(
        self, title: str, body: str, tokens: Sequence[str], data: Optional[dict] = None
    ) -> SendResult:
        valid_tokens = [t for t in tokens if is_valid_push_token(t)]
        if not valid_tokens:
            return SendResult(errors=["No valid Expo push tokens"])

        messages = [
            {
                "to": token,
                "sound": "default",
                "title": title,
                "body": body,
                "data": data or {},
                "priority": "high",
                "channelId": "default",
            }
            for token in valid_tokens
        ]
        try:
            tickets = self.push.send(messages)
        except (requests.RequestException, ValueError) as e:
            logger.exception("Expo push error: %s", e)
            return SendResult(failure_count=len(valid_tokens), errors=[str(e)])

        success_count = sum(1 for t in tickets if (t or {}).get("status") == "ok")
        return SendResult(
            success=success_count > 0,
            success_count=success_count,
            failure_count=len(tickets) - success_count,
        )

    def send_to_users(
        self, payload: NotificationPayload, users: Iterable[UserRecord]
    ) -> SendResult:
        """Pushes to every opted-in device, then records in-app copies and a log entry."""
        users = list(users)
        tokens = [
            u.push_token for u in users if u.push_token and u.notifications_enabled
        ]
        data = {"type": str(payload.type), **payload.data}
        if payload.related_issue_id:
            data["issueId"] = payload.related_issue_id

        result = SendResult()
        if tokens:
            result = self.send_to_mobile_users(payload.title, payload.body, tokens, data)

        try:
            self.db.add_notification_log(
                NotificationLogRecord(
                    title=payload.title,
                    body=payload.body,
                    type=str(payload.type),
                    target=str(payload.target),
                    priority=payload.priority,
                    sent_by=payload.sent_by,
                    recipient_count=len(users),
                    success_count=result.success_count,
                    failure_count=result.failure_count,
                    status=result.status,
                    related_issue_id=payload.related_issue_id,
                )
            )
        except Exception:
            logger.exception("Error logging notification")

        for user in users:
            try:
                self.db.create_notification(
                    NotificationRecord(
                        user_id=user.uid,
                        title=payload.title,
                        body=payload.body,
                        type=str(payload.type),
                        data=dict(payload.data),
                        related_issue_id=payload.related_issue_id,
                    )
                )
            except Exception:
                logger.exception("Error creating in-app notification for %s", user.uid)

        return result

    def send_bulk(self, payload: NotificationPayload, user_ids: Sequence[str]) -> SendResult:
        users = [u for u in (self.db.get_user(uid) for uid in user_ids) if u]
        if not users:
            return SendResult(errors=["No users found"])
        return self.send_to_users(payload, users)

    def broadcast(self, payload: NotificationPayload, role: Optional[str] = None) -> SendResult:
        users = self.db.list_users(role=role)
        if not users:
            return SendResult(errors=["No users found"])
        return self.send_to_users(payload, users)

    def send_automatic_notification(self, trigger: str, issue: IssueRecord) -> Optional[SendResult]:
        """Tells the reporter about a change to their issue."""
        message = automatic_message(trigger, issue)
        if not message:
            return None
        reporter = self.db.get_user(issue.reported_by_id)
        if not reporter or not wants_issue_updates(reporter):
            return None

        title, body = message
        payload = NotificationPayload(
            title=title,
            body=body,
            type=NotificationType.ISSUE_UPDATE,
            target=NotificationTarget.INDIVIDUAL,
            priority="high",
            related_issue_id=issue.issue_id,
            data={"trigger": trigger, "status": str(issue.status)},
            sent_by="system",
        )
        return self.send_to_users(payload, [reporter])

    def trigger_on_issue_update(self, old: IssueRecord, new: IssueRecord) -> list[str]:
        """Sends the automatic notifications implied by an issue change."""
        fired = automatic_triggers(old, new)
        for trigger in fired:
            try:
                self.send_automatic_notification(trigger, new)
            except Exception:
                logger.exception(
                    "Error sending automatic notification %s for %s", trigger, new.issue_id
                )
        return fired
