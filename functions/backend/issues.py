"""
Issue lifecycle: citizen submission, browsing, admin updates and comments.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from backend.auth import AuthenticatedUser
from backend.config import Settings
from backend.db import CommentRecord, DbClient, IssueNotFoundError, IssueRecord
from backend.images import (
    InvalidImageError,
    NormalizedImage,
    decode_base64_image,
    new_image_path,
    normalize_image,
)
from backend.notifications import NotificationService
from backend.queue import TriageQueue
from backend.storage import StorageClient
from shared.api import UpvoteResult
from shared.constants import (
    MAX_ADMIN_NOTES_LENGTH,
    MAX_COMMENT_LENGTH,
    MAX_DESCRIPTION_LENGTH,
    MAX_SEARCH_QUERY_LENGTH,
    MAX_TITLE_LENGTH,
    PHOTO_BONUS_POINTS,
    POINTS_PER_REPORT,
    RESOLUTION_BONUS_POINTS,
)
from shared.types import CommentType, IssuePriority, IssueStatus
from triage.automation import run_automations
from triage.duplicates import haversine_distance

logger = logging.getLogger(__name__)


class IssueValidationError(ValueError):
    """Raised when a submitted or updated issue is malformed."""


@dataclass
class IssueSubmission:
    title: str
    description: str
    category: str
    priority: str = IssuePriority.MEDIUM
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    image_base64: Optional[str] = None
    image_path: Optional[str] = None
    source: str = "mobile_app"


def _required(value: Optional[str], name: str, max_length: int) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise IssueValidationError(f"{name} is required")
    if len(cleaned) > max_length:
        raise IssueValidationError(f"{name} must be at most {max_length} characters")
    return cleaned


def _enum_value(value, enum_cls, name: str):
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(v.value for v in enum_cls)
        raise IssueValidationError(f"{name} must be one of: {allowed}") from exc


def _location(
    latitude: Optional[float], longitude: Optional[float], address: Optional[str]
) -> Optional[dict]:
    if latitude is None and longitude is None:
        return None
    if latitude is None or longitude is None:
        raise IssueValidationError("latitude and longitude must be given together")
    if not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
        raise IssueValidationError("Location is out of range")
    return {"latitude": latitude, "longitude": longitude, "address": address}


def store_image(
    storage: StorageClient, encoded: str, settings: Settings
) -> tuple[str, NormalizedImage]:
    """Decodes, normalizes and uploads a photo. Returns its storage path."""
    try:
        raw = decode_base64_image(encoded, settings.max_image_bytes)
        image = normalize_image(raw, settings.max_image_dimension)
    except InvalidImageError as exc:
        raise IssueValidationError(str(exc)) from exc
    path = new_image_path()
    storage.upload_bytes(path, image.data, content_type="image/jpeg")
    return path, image


def submit_issue(
    db: DbClient,
    storage: StorageClient,
    queue: TriageQueue,
    reporter: AuthenticatedUser,
    submission: IssueSubmission,
    settings: Settings,
) -> IssueRecord:
    title = _required(submission.title, "title", MAX_TITLE_LENGTH)
    description = _required(submission.description, "description", MAX_DESCRIPTION_LENGTH)
    category = _required(submission.category, "category", MAX_TITLE_LENGTH)
    priority = _enum_value(
        submission.priority or IssuePriority.MEDIUM, IssuePriority, "priority"
    )
    location = _location(submission.latitude, submission.longitude, submission.address)

    image_path: Optional[str] = None
    image_size_kb: Optional[int] = None
    if submission.image_base64:
        image_path, image = store_image(storage, submission.image_base64, settings)
        image_size_kb = image.size_kb
    elif submission.image_path:
        if not storage.exists(submission.image_path):
            raise IssueValidationError("Uploaded image not found")
        image_path = submission.image_path
    elif settings.require_issue_image:
        raise IssueValidationError("A photo of the issue is required")

    db.ensure_user(reporter.uid, reporter.email, reporter.display_name)
    issue = db.create_issue(
        IssueRecord(
            title=title,
            description=description,
            category=category,
            priority=priority,
            reported_by_id=reporter.uid,
            reported_by=reporter.email,
            location=location,
            address=submission.address,
            image_path=image_path,
            has_image=image_path is not None,
            image_size_kb=image_size_kb,
            source=submission.source or "mobile_app",
        )
    )
    points = POINTS_PER_REPORT + (PHOTO_BONUS_POINTS if issue.has_image else 0)
    db.increment_user_counters(reporter.uid, points=points, issues_reported=1)

    try:
        queue.enqueue(issue.issue_id)
    except Exception:
        logger.exception("Failed to enqueue triage for issue %s", issue.issue_id)
    logger.info("Issue %s reported by %s", issue.issue_id, reporter.uid)
    return issue


def sync_offline_batch(
    db: DbClient,
    storage: StorageClient,
    queue: TriageQueue,
    reporter: AuthenticatedUser,
    submissions: Sequence[IssueSubmission],
    settings: Settings,
) -> list[dict]:
    """Submits queued complaints one by one. A failure never stops the batch."""
    results = []
    for index, submission in enumerate(submissions):
        try:
            issue = submit_issue(db, storage, queue, reporter, submission, settings)
            results.append({"index": index, "success": True, "issueId": issue.issue_id})
        except IssueValidationError as e:
            results.append({"index": index, "success": False, "error": str(e)})
        except Exception as e:
            logger.exception("Offline sync of item %d failed", index)
            results.append({"index": index, "success": False, "error": str(e)})
    return results


def toggle_upvote(db: DbClient, issue_id: str, user_id: str) -> UpvoteResult:
    upvoted, count = db.toggle_upvote(issue_id, user_id)
    return UpvoteResult(success=True, upvoted=upvoted, upvotes=count)


def search_issues(
    issues: Iterable[IssueRecord], query: Optional[str]
) -> list[IssueRecord]:
    needle = (query or "").strip().lower()[:MAX_SEARCH_QUERY_LENGTH]
    if not needle:
        return list(issues)
    return [
        issue
        for issue in issues
        if any(
            needle in (value or "").lower()
            for value in (issue.title, issue.description, issue.category, issue.address)
        )
    ]


def nearby_issues(
    db: DbClient,
    latitude: float,
    longitude: float,
    radius_km: float,
    *,
    statuses: Optional[Sequence[str]] = None,
    categories: Optional[Sequence[str]] = None,
    priorities: Optional[Sequence[str]] = None,
) -> list[tuple[IssueRecord, float]]:
    """Public issues within radius_km, closest first, with distance in km."""
    results = []
    for issue in db.list_issues(statuses=list(statuses) if statuses else None, public_only=True):
        if issue.latitude is None or issue.longitude is None:
            continue
        if categories and issue.category not in categories:
            continue
        if priorities and issue.priority not in priorities:
            continue
        distance_km = (
            haversine_distance(latitude, longitude, issue.latitude, issue.longitude) / 1000
        )
        if distance_km <= radius_km:
            results.append((issue, distance_km))
    results.sort(key=lambda pair: pair[1])
    return results


def update_issue_as_admin(
    db: DbClient,
    notifier: NotificationService,
    issue_id: str,
    actor: AuthenticatedUser,
    *,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assigned_department: Optional[str] = None,
    admin_notes: Optional[str] = None,
    public_visible: Optional[bool] = None,
    category: Optional[str] = None,
) -> IssueRecord:
    current = db.get_issue(issue_id)
    if not current:
        raise IssueNotFoundError(issue_id)
    before = dataclasses.replace(current, upvoted_by=list(current.upvoted_by or []))

    updates: dict = {}
    if status is not None:
        updates["status"] = _enum_value(status, IssueStatus, "status")
    if priority is not None:
        updates["priority"] = _enum_value(priority, IssuePriority, "priority")
    if assigned_department is not None:
        updates["assigned_department"] = assigned_department.strip()
    if admin_notes is not None:
        if len(admin_notes) > MAX_ADMIN_NOTES_LENGTH:
            raise IssueValidationError("adminNotes is too long")
        updates["admin_notes"] = admin_notes
    if public_visible is not None:
        updates["public_visible"] = public_visible
    if category is not None:
        updates["category"] = _required(category, "category", MAX_TITLE_LENGTH)
    if not updates:
        raise IssueValidationError("No updatable fields given")

    # The reporter's bonus is paid on the first resolution only, even if the
    # issue is later reopened and resolved again.
    award_bonus = (
        updates.get("status") == IssueStatus.RESOLVED
        and before.status != IssueStatus.RESOLVED
        and not before.resolution_awarded
    )
    if award_bonus:
        updates["resolution_awarded"] = True

    updated = db.update_issue(issue_id, **updates)
    if not updated:
        raise IssueNotFoundError(issue_id)

    if before.status != updated.status:
        db.add_comment(
            CommentRecord(
                issue_id=issue_id,
                text=f'Status changed from "{before.status}" to "{updated.status}"',
                author=actor.display_name or actor.email or "Admin",
                author_email=actor.email or "",
                type=CommentType.STATUS_CHANGE,
            )
        )
        if award_bonus:
            db.increment_user_counters(
                updated.reported_by_id,
                points=RESOLUTION_BONUS_POINTS,
                issues_resolved=1,
            )

    notifier.trigger_on_issue_update(before, updated)
    run_automations(db, notifier, before, updated)
    return updated


def add_comment(
    db: DbClient, issue_id: str, actor: AuthenticatedUser, text: Optional[str]
) -> CommentRecord:
    if not db.get_issue(issue_id):
        raise IssueNotFoundError(issue_id)
    body = _required(text, "text", MAX_COMMENT_LENGTH)
    return db.add_comment(
        CommentRecord(
            issue_id=issue_id,
            text=body,
            author=actor.display_name or actor.email or "Admin",
            author_email=actor.email or "",
            type=CommentType.COMMENT,
        )
    )
