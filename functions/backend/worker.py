"""
Worker loop that triages newly reported issues.

For each issue id popped from the queue the worker infers category, priority
and sentiment, routes the issue to a department, flags likely duplicates and
runs the admin's automation rules.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from typing import Optional

from backend.config import get_settings
from backend.db import DbClient, IssueRecord
from backend.dependencies import (
    get_db_client,
    get_push_client,
    get_queue_client,
    get_storage_client,
)
from backend.notifications import NotificationService, PushClient
from backend.queue import TriageQueue
from backend.storage import StorageClient
from shared.types import AutomationTrigger, IssueStatus
from triage import assignment, automation, duplicates
from triage.categorize import triage_issue

logger = logging.getLogger(__name__)


def _load_image(storage: StorageClient, issue: IssueRecord) -> Optional[bytes]:
    if not issue.image_path:
        return None
    try:
        return storage.get_bytes(issue.image_path)
    except Exception:
        logger.exception("Could not load photo %s for issue %s", issue.image_path, issue.issue_id)
        return None


def process_issue(
    issue: IssueRecord,
    db: DbClient,
    storage: StorageClient,
    notifier: NotificationService,
    api_key: Optional[str] = None,
) -> IssueRecord:
    original = dataclasses.replace(issue, upvoted_by=list(issue.upvoted_by or []))

    result = triage_issue(
        issue.title,
        issue.description,
        category=issue.category,
        priority=issue.priority,
        image_bytes=_load_image(storage, issue),
        api_key=api_key,
    )
    updated = db.update_issue(
        issue.issue_id,
        category=result.category,
        priority=result.priority,
        sentiment_score=result.sentiment_score,
        ai_analysis=dataclasses.asdict(result.ai_analysis) if result.ai_analysis else None,
    )
    logger.info(
        "Triaged issue %s: category=%s priority=%s sentiment=%.2f",
        issue.issue_id,
        result.category,
        result.priority,
        result.sentiment_score,
    )

    if not updated.assigned_department:
        try:
            rules = [r for r in db.list_assignment_rules() if r.enabled]
            assignment.assign_issue(db, updated, rules)
        except Exception:
            logger.exception("Auto-assignment failed for issue %s", issue.issue_id)

    try:
        candidates = db.list_issues(statuses=[IssueStatus.OPEN, IssueStatus.IN_PROGRESS])
        matches = duplicates.find_duplicates(updated, candidates)
        if matches:
            duplicates.flag_as_duplicate(db, issue.issue_id, matches[0])
    except Exception:
        logger.exception("Duplicate detection failed for issue %s", issue.issue_id)

    final = db.get_issue(issue.issue_id)
    notifier.trigger_on_issue_update(original, final)
    automation.fire_rules(db, notifier, AutomationTrigger.ISSUE_CREATED, final)
    if final.assigned_department and final.assigned_department != original.assigned_department:
        automation.fire_rules(db, notifier, AutomationTrigger.ISSUE_ASSIGNED, final)
    return final


def process_next(
    *,
    db: Optional[DbClient] = None,
    queue: Optional[TriageQueue] = None,
    storage: Optional[StorageClient] = None,
    push: Optional[PushClient] = None,
    block: bool = True,
    timeout: Optional[int] = None,
) -> bool:
    """
    Fetch and triage one issue from the queue. Returns True if processed.
    """
    db = db or get_db_client()
    queue = queue or get_queue_client()
    storage = storage or get_storage_client()
    push = push or get_push_client()

    issue_id = queue.dequeue(block=block, timeout=timeout)
    if not issue_id:
        return False

    issue = db.get_issue(issue_id)
    if not issue:
        logger.warning("Received issue_id %s from queue but no DB record found", issue_id)
        return False

    settings = get_settings()
    try:
        process_issue(
            issue,
            db,
            storage,
            NotificationService(db, push),
            api_key=settings.gemini_api_key,
        )
    except Exception:
        logger.exception("Triage failed for issue %s", issue_id)
        return False
    return True


def run_loop(poll_interval_seconds: float = 2.0) -> None:
    """
    Simple polling loop that blocks on the queue. Intended to be run under systemd/supervisor.
    """
    db = get_db_client()
    queue = get_queue_client()
    storage = get_storage_client()
    push = get_push_client()
    while True:
        processed = process_next(
            db=db,
            queue=queue,
            storage=storage,
            push=push,
            block=True,
            timeout=int(poll_interval_seconds),
        )
        if not processed:
            time.sleep(poll_interval_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_loop()
