"""
Database abstraction for Postgres and an in-memory test implementation.

Records mirror the documents the citizen app and admin portal read and write
(`civicIssues`, `users`, per-user notifications, comments, departments and
rule collections). Keys are exposed in camelCase via `as_dict()` so API
payloads match the Firestore field names.
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field, fields
from typing import Dict, Iterable, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    Integer,
    String,
    Text,
    create_engine,
    select,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from shared.json_utils import convert_keys
from shared.types import IssuePriority, IssueStatus, UserRole, UserStatus


class IssueNotFoundError(LookupError):
    """Raised when an operation targets an issue that does not exist."""

    def __init__(self, issue_id: str):
        super().__init__(f"Issue {issue_id} does not exist!")
        self.issue_id = issue_id


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> float:
    return time.time()


@dataclass
class IssueRecord:
    title: str
    description: str
    category: str
    reported_by_id: str
    reported_by: Optional[str] = None
    status: str = IssueStatus.OPEN
    priority: str = IssuePriority.MEDIUM
    issue_id: str = field(default_factory=_new_id)
    location: Optional[dict] = None
    address: Optional[str] = None
    image_path: Optional[str] = None
    has_image: bool = False
    image_size_kb: Optional[int] = None
    assigned_department: str = ""
    admin_notes: str = ""
    public_visible: bool = True
    resolution_awarded: bool = False
    source: str = "mobile_app"
    upvotes: int = 0
    upvoted_by: list = field(default_factory=list)
    duplicate_of_id: Optional[str] = None
    duplicate_score: Optional[float] = None
    ai_analysis: Optional[dict] = None
    sentiment_score: Optional[float] = None
    reported_at: float = field(default_factory=_now)
    last_updated: float = field(default_factory=_now)

    @property
    def latitude(self) -> Optional[float]:
        return (self.location or {}).get("latitude")

    @property
    def longitude(self) -> Optional[float]:
        return (self.location or {}).get("longitude")

    def as_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["id"] = data.pop("issue_id")
        data["status"] = str(self.status)
        data["priority"] = str(self.priority)
        data["upvoted_by"] = list(self.upvoted_by or [])
        return convert_keys(data, "snake_to_camel")


@dataclass
class UserRecord:
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    phone: Optional[str] = None
    points: int = 0
    issues_reported: int = 0
    issues_resolved: int = 0
    role: str = UserRole.CITIZEN
    status: str = UserStatus.ACTIVE
    notifications_enabled: bool = True
    notification_preferences: dict = field(default_factory=dict)
    push_token: Optional[str] = None
    created_at: float = field(default_factory=_now)
    last_active: float = field(default_factory=_now)

    def as_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["role"] = str(self.role)
        data["status"] = str(self.status)
        return convert_keys(data, "snake_to_camel")


@dataclass
class NotificationRecord:
    user_id: str
    title: str
    body: str
    type: str = "issue_update"
    data: dict = field(default_factory=dict)
    read: bool = False
    related_issue_id: Optional[str] = None
    notification_id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=_now)
    updated_at: float = field(default_factory=_now)

    def as_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["id"] = data.pop("notification_id")
        payload = data.pop("data")
        converted = convert_keys(data, "snake_to_camel")
        # Arbitrary payloads are passed through untouched.
        converted["data"] = payload
        return converted


@dataclass
class CommentRecord:
    issue_id: str
    text: str
    author: str
    author_email: str
    type: str = "comment"
    comment_id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=_now)

    def as_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["id"] = data.pop("comment_id")
        return convert_keys(data, "snake_to_camel")


@dataclass
class DepartmentRecord:
    name: str
    description: str = ""
    head: str = ""
    email: str = ""
    phone: str = ""
    active: bool = True
    categories: list = field(default_factory=list)
    department_id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=_now)

    def as_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["id"] = data.pop("department_id")
        return convert_keys(data, "snake_to_camel")


@dataclass
class AssignmentRuleRecord:
    category: str
    department: str
    priority: str = IssuePriority.MEDIUM
    enabled: bool = True
    rule_id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=_now)

    def as_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["id"] = data.pop("rule_id")
        return convert_keys(data, "snake_to_camel")


@dataclass
class AutomationRuleRecord:
    trigger: str
    description: str
    enabled: bool = True
    condition: str = ""
    template_id: str = ""
    times_triggered: int = 0
    last_triggered: Optional[float] = None
    rule_id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=_now)

    def as_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["id"] = data.pop("rule_id")
        return convert_keys(data, "snake_to_camel")


@dataclass
class NotificationLogRecord:
    title: str
    body: str
    type: str
    target: str
    priority: str = "normal"
    sent_by: str = "admin"
    recipient_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    status: str = "failed"
    related_issue_id: Optional[str] = None
    log_id: str = field(default_factory=_new_id)
    sent_at: float = field(default_factory=_now)

    def as_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["id"] = data.pop("log_id")
        return convert_keys(data, "snake_to_camel")


# Fields an issue update may touch. Upvote state is only changed through
# toggle_upvote so the count and voter list stay consistent.
UPDATABLE_ISSUE_FIELDS = frozenset(
    {
        "title",
        "description",
        "category",
        "status",
        "priority",
        "address",
        "location",
        "image_path",
        "has_image",
        "image_size_kb",
        "assigned_department",
        "admin_notes",
        "public_visible",
        "resolution_awarded",
        "duplicate_of_id",
        "duplicate_score",
        "ai_analysis",
        "sentiment_score",
    }
)

UPDATABLE_USER_FIELDS = frozenset(
    {
        "email",
        "display_name",
        "photo_url",
        "phone",
        "role",
        "status",
        "notifications_enabled",
        "notification_preferences",
        "push_token",
        "last_active",
    }
)


def _check_fields(updates: dict, allowed: Iterable[str]) -> None:
    unknown = set(updates) - set(allowed)
    if unknown:
        raise ValueError(f"Cannot update fields: {sorted(unknown)}")


class DbClient(Protocol):
    """Interface for database access."""

    # Issues
    def create_issue(self, issue: IssueRecord) -> IssueRecord:
        ...

    def get_issue(self, issue_id: str) -> Optional[IssueRecord]:
        ...

    def update_issue(self, issue_id: str, **updates) -> Optional[IssueRecord]:
        ...

    def list_issues(
        self,
        *,
        statuses: Optional[list[str]] = None,
        category: Optional[str] = None,
        priority: Optional[str] = None,
        reporter_id: Optional[str] = None,
        assigned_department: Optional[str] = None,
        public_only: bool = False,
        order_by: str = "reported_at",
        limit: Optional[int] = None,
    ) -> list[IssueRecord]:
        ...

    def toggle_upvote(self, issue_id: str, user_id: str) -> tuple[bool, int]:
        ...

    # Comments
    def add_comment(self, comment: CommentRecord) -> CommentRecord:
        ...

    def list_comments(self, issue_id: str) -> list[CommentRecord]:
        ...

    # Users
    def get_user(self, uid: str) -> Optional[UserRecord]:
        ...

    def ensure_user(
        self, uid: str, email: Optional[str] = None, display_name: Optional[str] = None
    ) -> UserRecord:
        ...

    def update_user(self, uid: str, **updates) -> Optional[UserRecord]:
        ...

    def increment_user_counters(
        self,
        uid: str,
        *,
        points: int = 0,
        issues_reported: int = 0,
        issues_resolved: int = 0,
    ) -> None:
        ...

    def list_users(
        self, *, role: Optional[str] = None, by_points: bool = False, limit: Optional[int] = None
    ) -> list[UserRecord]:
        ...

    # Notifications
    def create_notification(self, notification: NotificationRecord) -> NotificationRecord:
        ...

    def list_notifications(self, uid: str, limit: int = 100) -> list[NotificationRecord]:
        ...

    def mark_notification_read(self, uid: str, notification_id: str) -> bool:
        ...

    def mark_all_notifications_read(self, uid: str) -> int:
        ...

    def count_unread_notifications(self, uid: str) -> int:
        ...

    def add_notification_log(self, log: NotificationLogRecord) -> None:
        ...

    def list_notification_logs(self, limit: int = 100) -> list[NotificationLogRecord]:
        ...

    # Departments and rules
    def list_departments(self) -> list[DepartmentRecord]:
        ...

    def create_department(self, department: DepartmentRecord) -> DepartmentRecord:
        ...

    def list_assignment_rules(self) -> list[AssignmentRuleRecord]:
        ...

    def create_assignment_rule(self, rule: AssignmentRuleRecord) -> AssignmentRuleRecord:
        ...

    def list_automation_rules(self) -> list[AutomationRuleRecord]:
        ...

    def create_automation_rule(self, rule: AutomationRuleRecord) -> AutomationRuleRecord:
        ...

    def record_automation_trigger(self, rule_id: str) -> None:
        ...


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.issues: Dict[str, IssueRecord] = {}
        self.comments: Dict[str, list[CommentRecord]] = {}
        self.users: Dict[str, UserRecord] = {}
        self.notifications: Dict[str, list[NotificationRecord]] = {}
        self.notification_logs: list[NotificationLogRecord] = []
        self.departments: Dict[str, DepartmentRecord] = {}
        self.assignment_rules: Dict[str, AssignmentRuleRecord] = {}
        self.automation_rules: Dict[str, AutomationRuleRecord] = {}
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.issues.clear()
        self.comments.clear()
        self.users.clear()
        self.notifications.clear()
        self.notification_logs.clear()
        self.departments.clear()
        self.assignment_rules.clear()
        self.automation_rules.clear()

    def create_issue(self, issue: IssueRecord) -> IssueRecord:
        self.issues[issue.issue_id] = issue
        return issue

    def get_issue(self, issue_id: str) -> Optional[IssueRecord]:
        return self.issues.get(issue_id)

    def update_issue(self, issue_id: str, **updates) -> Optional[IssueRecord]:
        _check_fields(updates, UPDATABLE_ISSUE_FIELDS)
        issue = self.issues.get(issue_id)
        if not issue:
            return None
        for name, value in updates.items():
            setattr(issue, name, value)
        issue.last_updated = _now()
        return issue

    def list_issues(
        self,
        *,
        statuses: Optional[list[str]] = None,
        category: Optional[str] = None,
        priority: Optional[str] = None,
        reporter_id: Optional[str] = None,
        assigned_department: Optional[str] = None,
        public_only: bool = False,
        order_by: str = "reported_at",
        limit: Optional[int] = None,
    ) -> list[IssueRecord]:
        items = [
            issue
            for issue in self.issues.values()
            if (not statuses or issue.status in statuses)
            and (category is None or issue.category == category)
            and (priority is None or issue.priority == priority)
            and (reporter_id is None or issue.reported_by_id == reporter_id)
            and (
                assigned_department is None
                or issue.assigned_department == assigned_department
            )
            and (not public_only or issue.public_visible)
        ]
        items.sort(key=lambda issue: getattr(issue, order_by), reverse=True)
        return items[:limit] if limit else items

    def toggle_upvote(self, issue_id: str, user_id: str) -> tuple[bool, int]:
        with self._lock:
            issue = self.issues.get(issue_id)
            if not issue:
                raise IssueNotFoundError(issue_id)
            voters = list(issue.upvoted_by or [])
            if user_id in voters:
                voters.remove(user_id)
                issue.upvotes = max(0, issue.upvotes - 1)
                upvoted = False
            else:
                voters.append(user_id)
                issue.upvotes += 1
                upvoted = True
            issue.upvoted_by = voters
            return upvoted, issue.upvotes

    def add_comment(self, comment: CommentRecord) -> CommentRecord:
        self.comments.setdefault(comment.issue_id, []).append(comment)
        return comment

    def list_comments(self, issue_id: str) -> list[CommentRecord]:
        return sorted(self.comments.get(issue_id, []), key=lambda c: c.created_at)

    def get_user(self, uid: str) -> Optional[UserRecord]:
        return self.users.get(uid)

    def ensure_user(
        self, uid: str, email: Optional[str] = None, display_name: Optional[str] = None
    ) -> UserRecord:
        with self._lock:
            user = self.users.get(uid)
            if user:
                return user
            user = UserRecord(
                uid=uid,
                email=email,
                display_name=display_name or (email.split("@")[0] if email else None),
            )
            self.users[uid] = user
            return user

    def update_user(self, uid: str, **updates) -> Optional[UserRecord]:
        _check_fields(updates, UPDATABLE_USER_FIELDS)
        user = self.users.get(uid)
        if not user:
            return None
        for name, value in updates.items():
            setattr(user, name, value)
        return user

    def increment_user_counters(
        self,
        uid: str,
        *,
        points: int = 0,
        issues_reported: int = 0,
        issues_resolved: int = 0,
    ) -> None:
        with self._lock:
            user = self.users.get(uid)
            if not user:
                return
            user.points += points
            user.issues_reported += issues_reported
            user.issues_resolved += issues_resolved

    def list_users(
        self, *, role: Optional[str] = None, by_points: bool = False, limit: Optional[int] = None
    ) -> list[UserRecord]:
        users = [u for u in self.users.values() if role is None or u.role == role]
        if by_points:
            users.sort(key=lambda u: u.points, reverse=True)
        return users[:limit] if limit else users

    def create_notification(self, notification: NotificationRecord) -> NotificationRecord:
        self.notifications.setdefault(notification.user_id, []).append(notification)
        return notification

    def list_notifications(self, uid: str, limit: int = 100) -> list[NotificationRecord]:
        items = sorted(
            self.notifications.get(uid, []), key=lambda n: n.created_at, reverse=True
        )
        return items[:limit]

    def mark_notification_read(self, uid: str, notification_id: str) -> bool:
        for notification in self.notifications.get(uid, []):
            if notification.notification_id == notification_id:
                notification.read = True
                notification.updated_at = _now()
                return True
        return False

    def mark_all_notifications_read(self, uid: str) -> int:
        updated = 0
        for notification in self.notifications.get(uid, []):
            if not notification.read:
                notification.read = True
                notification.updated_at = _now()
                updated += 1
        return updated

    def count_unread_notifications(self, uid: str) -> int:
        return sum(1 for n in self.notifications.get(uid, []) if not n.read)

    def add_notification_log(self, log: NotificationLogRecord) -> None:
        self.notification_logs.append(log)

    def list_notification_logs(self, limit: int = 100) -> list[NotificationLogRecord]:
        items = sorted(self.notification_logs, key=lambda log: log.sent_at, reverse=True)
        return items[:limit]

    def list_departments(self) -> list[DepartmentRecord]:
        return list(self.departments.values())

    def create_department(self, department: DepartmentRecord) -> DepartmentRecord:
        self.departments[department.department_id] = department
        return department

    def list_assignment_rules(self) -> list[AssignmentRuleRecord]:
        return list(self.assignment_rules.values())

    def create_assignment_rule(self, rule: AssignmentRuleRecord) -> AssignmentRuleRecord:
        self.assignment_rules[rule.rule_id] = rule
        return rule

    def list_automation_rules(self) -> list[AutomationRuleRecord]:
        return list(self.automation_rules.values())

    def create_automation_rule(self, rule: AutomationRuleRecord) -> AutomationRuleRecord:
        self.automation_rules[rule.rule_id] = rule
        return rule

    def record_automation_trigger(self, rule_id: str) -> None:
        rule = self.automation_rules.get(rule_id)
        if rule:
            rule.times_triggered += 1
            rule.last_triggered = _now()


def _to_record(row, record_cls):
    return record_cls(**{f.name: getattr(row, f.name) for f in fields(record_cls)})


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_issue_record(self, row: "IssueRow") -> IssueRecord:
        record = _to_record(row, IssueRecord)
        record.status = IssueStatus(row.status)
        record.priority = IssuePriority(row.priority)
        record.upvoted_by = list(row.upvoted_by or [])
        return record

    def create_issue(self, issue: IssueRecord) -> IssueRecord:
        with self.Session() as session:
            values = {f.name: getattr(issue, f.name) for f in fields(IssueRecord)}
            values["status"] = str(issue.status)
            values["priority"] = str(issue.priority)
            row = IssueRow(**values)
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_issue_record(row)

    def get_issue(self, issue_id: str) -> Optional[IssueRecord]:
        with self.Session() as session:
            row = session.get(IssueRow, issue_id)
            if not row:
                return None
            return self._to_issue_record(row)

    def update_issue(self, issue_id: str, **updates) -> Optional[IssueRecord]:
        _check_fields(updates, UPDATABLE_ISSUE_FIELDS)
        with self.Session() as session:
            row = session.get(IssueRow, issue_id)
            if not row:
                return None
            for name, value in updates.items():
                if name in ("status", "priority"):
                    value = str(value)
                setattr(row, name, value)
            row.last_updated = _now()
            session.commit()
            session.refresh(row)
            return self._to_issue_record(row)

    def list_issues(
        self,
        *,
        statuses: Optional[list[str]] = None,
        category: Optional[str] = None,
        priority: Optional[str] = None,
        reporter_id: Optional[str] = None,
        assigned_department: Optional[str] = None,
        public_only: bool = False,
        order_by: str = "reported_at",
        limit: Optional[int] = None,
    ) -> list[IssueRecord]:
        stmt = select(IssueRow)
        if statuses:
            stmt = stmt.where(IssueRow.status.in_([str(s) for s in statuses]))
        if category is not None:
            stmt = stmt.where(IssueRow.category == category)
        if priority is not None:
            stmt = stmt.where(IssueRow.priority == str(priority))
        if reporter_id is not None:
            stmt = stmt.where(IssueRow.reported_by_id == reporter_id)
        if assigned_department is not None:
            stmt = stmt.where(IssueRow.assigned_department == assigned_department)
        if public_only:
            stmt = stmt.where(IssueRow.public_visible.is_(True))
        stmt = stmt.order_by(getattr(IssueRow, order_by).desc())
        if limit:
            stmt = stmt.limit(limit)
        with self.Session() as session:
            rows = session.execute(stmt).scalars().all()
            return [self._to_issue_record(row) for row in rows]

    def toggle_upvote(self, issue_id: str, user_id: str) -> tuple[bool, int]:
        with self.Session() as session:
            stmt = (
                select(IssueRow)
                .where(IssueRow.issue_id == issue_id)
                .with_for_update()
            )
            row = session.execute(stmt).scalar_one_or_none()
            if not row:
                raise IssueNotFoundError(issue_id)
            voters = list(row.upvoted_by or [])
            if user_id in voters:
                voters.remove(user_id)
                row.upvotes = max(0, (row.upvotes or 0) - 1)
                upvoted = False
            else:
                voters.append(user_id)
                row.upvotes = (row.upvotes or 0) + 1
                upvoted = True
            row.upvoted_by = voters
            session.commit()
            return upvoted, row.upvotes

    def add_comment(self, comment: CommentRecord) -> CommentRecord:
        with self.Session() as session:
            session.add(
                CommentRow(**{f.name: getattr(comment, f.name) for f in fields(CommentRecord)})
            )
            session.commit()
            return comment

    def list_comments(self, issue_id: str) -> list[CommentRecord]:
        with self.Session() as session:
            rows = (
                session.query(CommentRow)
                .filter(CommentRow.issue_id == issue_id)
                .order_by(CommentRow.created_at.asc())
                .all()
            )
            return [_to_record(row, CommentRecord) for row in rows]

    def _to_user_record(self, row: "UserRow") -> UserRecord:
        record = _to_record(row, UserRecord)
        record.notification_preferences = dict(row.notification_preferences or {})
        return record

    def get_user(self, uid: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, uid)
            return self._to_user_record(row) if row else None

    def ensure_user(
        self, uid: str, email: Optional[str] = None, display_name: Optional[str] = None
    ) -> UserRecord:
        with self.Session() as session:
            row = session.get(UserRow, uid)
            if row:
                return self._to_user_record(row)
            record = UserRecord(
                uid=uid,
                email=email,
                display_name=display_name or (email.split("@")[0] if email else None),
            )
            values = {f.name: getattr(record, f.name) for f in fields(UserRecord)}
            values["role"] = str(record.role)
            values["status"] = str(record.status)
            row = UserRow(**values)
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_user_record(row)

    def update_user(self, uid: str, **updates) -> Optional[UserRecord]:
        _check_fields(updates, UPDATABLE_USER_FIELDS)
        with self.Session() as session:
            row = session.get(UserRow, uid)
            if not row:
                return None
            for name, value in updates.items():
                setattr(row, name, value)
            session.commit()
            session.refresh(row)
            return self._to_user_record(row)

    def increment_user_counters(
        self,
        uid: str,
        *,
        points: int = 0,
        issues_reported: int = 0,
        issues_resolved: int = 0,
    ) -> None:
        with self.Session() as session:
            session.query(UserRow).filter(UserRow.uid == uid).update(
                {
                    UserRow.points: UserRow.points + points,
                    UserRow.issues_reported: UserRow.issues_reported + issues_reported,
                    UserRow.issues_resolved: UserRow.issues_resolved + issues_resolved,
                },
                synchronize_session=False,
            )
            session.commit()

    def list_users(
        self, *, role: Optional[str] = None, by_points: bool = False, limit: Optional[int] = None
    ) -> list[UserRecord]:
        with self.Session() as session:
            query = session.query(UserRow)
            if role is not None:
                query = query.filter(UserRow.role == str(role))
            if by_points:
                query = query.order_by(UserRow.points.desc())
            else:
                query = query.order_by(UserRow.created_at.asc())
            if limit:
                query = query.limit(limit)
            return [self._to_user_record(row) for row in query.all()]

    def create_notification(self, notification: NotificationRecord) -> NotificationRecord:
        with self.Session() as session:
            session.add(
                NotificationRow(
                    **{f.name: getattr(notification, f.name) for f in fields(NotificationRecord)}
                )
            )
            session.commit()
            return notification

    def list_notifications(self, uid: str, limit: int = 100) -> list[NotificationRecord]:
        with self.Session() as session:
            rows = (
                session.query(NotificationRow)
                .filter(NotificationRow.user_id == uid)
                .order_by(NotificationRow.created_at.desc())
                .limit(limit)
                .all()
            )
            return [_to_record(row, NotificationRecord) for row in rows]

    def mark_notification_read(self, uid: str, notification_id: str) -> bool:
        with self.Session() as session:
            updated = (
                session.query(NotificationRow)
                .filter(
                    NotificationRow.user_id == uid,
                    NotificationRow.notification_id == notification_id,
                )
                .update(
                    {NotificationRow.read: True, NotificationRow.updated_at: _now()},
                    synchronize_session=False,
                )
            )
            session.commit()
            return bool(updated)

    def mark_all_notifications_read(self, uid: str) -> int:
        with self.Session() as session:
            updated = (
                session.query(NotificationRow)
                .filter(
                    NotificationRow.user_id == uid,
                    NotificationRow.read.is_(False),
                )
                .update(
                    {NotificationRow.read: True, NotificationRow.updated_at: _now()},
                    synchronize_session=False,
                )
            )
            session.commit()
            return updated or 0

    def count_unread_notifications(self, uid: str) -> int:
        with self.Session() as session:
            return (
                session.query(NotificationRow)
                .filter(
                    NotificationRow.user_id == uid,
                    NotificationRow.read.is_(False),
                )
                .count()
            )

    def add_notification_log(self, log: NotificationLogRecord) -> None:
        with self.Session() as session:
            session.add(
                NotificationLogRow(
                    **{f.name: getattr(log, f.name) for f in fields(NotificationLogRecord)}
                )
            )
            session.commit()

    def list_notification_logs(self, limit: int = 100) -> list[NotificationLogRecord]:
        with self.Session() as session:
            rows = (
                session.query(NotificationLogRow)
                .order_by(NotificationLogRow.sent_at.desc())
                .limit(limit)
                .all()
            )
            return [_to_record(row, NotificationLogRecord) for row in rows]

    def list_departments(self) -> list[DepartmentRecord]:
        with self.Session() as session:
            rows = session.query(DepartmentRow).order_by(DepartmentRow.created_at.asc()).all()
            return [_to_record(row, DepartmentRecord) for row in rows]

    def create_department(self, department: DepartmentRecord) -> DepartmentRecord:
        with self.Session() as session:
            session.add(
                DepartmentRow(
                    **{f.name: getattr(department, f.name) for f in fields(DepartmentRecord)}
                )
            )
            session.commit()
            return department

    def list_assignment_rules(self) -> list[AssignmentRuleRecord]:
        with self.Session() as session:
            rows = (
                session.query(AssignmentRuleRow)
                .order_by(AssignmentRuleRow.created_at.asc())
                .all()
            )
            return [_to_record(row, AssignmentRuleRecord) for row in rows]

    def create_assignment_rule(self, rule: AssignmentRuleRecord) -> AssignmentRuleRecord:
        with self.Session() as session:
            values = {f.name: getattr(rule, f.name) for f in fields(AssignmentRuleRecord)}
            values["priority"] = str(rule.priority)
            session.add(AssignmentRuleRow(**values))
            session.commit()
            return rule

    def list_automation_rules(self) -> list[AutomationRuleRecord]:
        with self.Session() as session:
            rows = (
                session.query(AutomationRuleRow)
                .order_by(AutomationRuleRow.created_at.asc())
                .all()
            )
            return [_to_record(row, AutomationRuleRecord) for row in rows]

    def create_automation_rule(self, rule: AutomationRuleRecord) -> AutomationRuleRecord:
        with self.Session() as session:
            values = {f.name: getattr(rule, f.name) for f in fields(AutomationRuleRecord)}
            values["trigger"] = str(rule.trigger)
            session.add(AutomationRuleRow(**values))
            session.commit()
            return rule

    def record_automation_trigger(self, rule_id: str) -> None:
        with self.Session() as session:
            session.query(AutomationRuleRow).filter(
                AutomationRuleRow.rule_id == rule_id
            ).update(
                {
                    AutomationRuleRow.times_triggered: AutomationRuleRow.times_triggered + 1,
                    AutomationRuleRow.last_triggered: _now(),
                },
                synchronize_session=False,
            )
            session.commit()


Base = declarative_base()


class IssueRow(Base):
    __tablename__ = "civic_issues"

    issue_id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, index=True)
    priority = Column(String, nullable=False, index=True)
    reported_by_id = Column(String, nullable=False, index=True)
    reported_by = Column(String, nullable=True)
    location = Column(JSON, nullable=True)
    address = Column(String, nullable=True)
    image_path = Column(String, nullable=True)
    has_image = Column(Boolean, nullable=False, default=False)
    image_size_kb = Column(Integer, nullable=True)
    assigned_department = Column(String, nullable=False, default="", index=True)
    admin_notes = Column(Text, nullable=False, default="")
    public_visible = Column(Boolean, nullable=False, default=True)
    resolution_awarded = Column(Boolean, nullable=False, default=False)
    source = Column(String, nullable=False, default="mobile_app")
    upvotes = Column(Integer, nullable=False, default=0)
    upvoted_by = Column(JSON, nullable=False, default=list)
    duplicate_of_id = Column(String, nullable=True)
    duplicate_score = Column(Float, nullable=True)
    ai_analysis = Column(JSON, nullable=True)
    sentiment_score = Column(Float, nullable=True)
    reported_at = Column(Float, nullable=False, index=True)
    last_updated = Column(Float, nullable=False)


class CommentRow(Base):
    __tablename__ = "issue_comments"

    comment_id = Column(String, primary_key=True)
    issue_id = Column(String, nullable=False, index=True)
    text = Column(Text, nullable=False)
    author = Column(String, nullable=False)
    author_email = Column(String, nullable=False)
    type = Column(String, nullable=False, default="comment")
    created_at = Column(Float, nullable=False)


class UserRow(Base):
    __tablename__ = "users"

    uid = Column(String, primary_key=True)
    email = Column(String, nullable=True, index=True)
    display_name = Column(String, nullable=True)
    photo_url = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    points = Column(Integer, nullable=False, default=0, index=True)
    issues_reported = Column(Integer, nullable=False, default=0)
    issues_resolved = Column(Integer, nullable=False, default=0)
    role = Column(String, nullable=False, default="citizen", index=True)
    status = Column(String, nullable=False, default="active")
    notifications_enabled = Column(Boolean, nullable=False, default=True)
    notification_preferences = Column(JSON, nullable=False, default=dict)
    push_token = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    last_active = Column(Float, nullable=False)


class NotificationRow(Base):
    __tablename__ = "user_notifications"

    notification_id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    type = Column(String, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    read = Column(Boolean, nullable=False, default=False, index=True)
    related_issue_id = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class NotificationLogRow(Base):
    __tablename__ = "notification_logs"

    log_id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    type = Column(String, nullable=False)
    target = Column(String, nullable=False)
    priority = Column(String, nullable=False)
    sent_by = Column(String, nullable=False)
    recipient_count = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    failure_count = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False)
    related_issue_id = Column(String, nullable=True)
    sent_at = Column(Float, nullable=False, index=True)


class DepartmentRow(Base):
    __tablename__ = "departments"

    department_id = Column(String, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=False, default="")
    head = Column(String, nullable=False, default="")
    email = Column(String, nullable=False, default="")
    phone = Column(String, nullable=False, default="")
    active = Column(Boolean, nullable=False, default=True)
    categories = Column(JSON, nullable=False, default=list)
    created_at = Column(Float, nullable=False)


class AssignmentRuleRow(Base):
    __tablename__ = "auto_assignment_rules"

    rule_id = Column(String, primary_key=True)
    category = Column(String, nullable=False, index=True)
    department = Column(String, nullable=False)
    priority = Column(String, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(Float, nullable=False)


class AutomationRuleRow(Base):
    __tablename__ = "automation_rules"

    rule_id = Column(String, primary_key=True)
    trigger = Column(String, nullable=False, index=True)
    description = Column(String, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    condition = Column(String, nullable=False, default="")
    template_id = Column(String, nullable=False, default="")
    times_triggered = Column(Integer, nullable=False, default=0)
    last_triggered = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)
