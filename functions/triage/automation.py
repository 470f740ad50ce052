# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================


"""
Admin-configured automation rules.

Each enabled rule listens for one trigger and sends a push to a fixed
audience. Firing a rule bumps its `timesTriggered` counter.
"""

import logging
from typing import Optional

from backend.db import AutomationRuleRecord, IssueRecord
from backend.notifications import NotificationPayload, NotificationService
from shared.types import AutomationTrigger, NotificationTarget, NotificationType, UserRole

logger = logging.getLogger(__name__)

DEFAULT_AUTOMATION_RULES = [
    (AutomationTrigger.ISSUE_CREATED, "Notify admins when a new issue is reported"),
    (AutomationTrigger.STATUS_CHANGED, "Notify the reporter when an issue changes status"),
    (AutomationTrigger.ISSUE_ASSIGNED, "Notify department heads about new assignments"),
    (AutomationTrigger.PRIORITY_CHANGED, "Notify admins when an issue priority changes"),
]


def seed_default_automation_rules(db) -> int:
    existing = {r.trigger for r in db.list_automation_rules()}
    created = 0
    for trigger, description in DEFAULT_AUTOMATION_RULES:
        if trigger in existing:
            continue
        db.create_automation_rule(
            AutomationRuleRecord(trigger=trigger, description=description)
        )
        created += 1
    return created


def _audience(db, trigger: str, issue: IssueRecord):
    if trigger in (AutomationTrigger.ISSUE_CREATED, AutomationTrigger.PRIORITY_CHANGED):
        users = db.list_users(role=UserRole.ADMIN)
    elif trigger == AutomationTrigger.STATUS_CHANGED:
        reporter = db.get_user(issue.reported_by_id)
        users = [reporter] if reporter else []
    elif trigger == AutomationTrigger.ISSUE_ASSIGNED:
        users = db.list_users(role=UserRole.DEPARTMENT_HEAD)
    else:
        return []
    return [u for u in users if u.push_token]


def _message(trigger: str, issue: IssueRecord) -> tuple[str, str]:
    if trigger == AutomationTrigger.ISSUE_CREATED:
        return (
            "New Issue Reported",
            f'"{issue.title}" - {issue.category} ({issue.priority})',
        )
    if trigger == AutomationTrigger.STATUS_CHANGED:
        return "Issue Status Updated", f'"{issue.title}" is now "{issue.status}"'
    if trigger == AutomationTrigger.ISSUE_ASSIGNED:
        return (
            "Issue Assigned to Your Department",
            f'"{issue.title}" assigned to {issue.assigned_department}',
        )
    return "Issue Priority Changed", f'"{issue.title}" priority set to {issue.priority}'


def fire_rules(
    db, notifier: NotificationService, trigger: str, issue: IssueRecord
) -> int:
    """Runs every enabled rule for `trigger`. Returns how many rules fired."""
    rules = [r for r in db.list_automation_rules() if r.enabled and r.trigger == trigger]
    fired = 0
    for rule in rules:
        try:
            targets = _audience(db, trigger, issue)
            if not targets:
                continue
            title, body = _message(trigger, issue)
            result = notifier.send_to_users(
                NotificationPayload(
                    title=title,
                    body=body,
                    type=NotificationType.AUTOMATED,
                    target=NotificationTarget.INDIVIDUAL,
                    related_issue_id=issue.issue_id,
                    sent_by="automation",
                ),
                targets,
            )
            db.record_automation_trigger(rule.rule_id)
            fired += 1
            logger.info(
                'Automation "%s" fired: %d notifications sent',
                rule.description,
                result.success_count,
            )
        except Exception:
            logger.exception('Automation rule "%s" failed', rule.description)
    return fired


def triggers_for_update(old: Optional[IssueRecord], new: IssueRecord) -> list[str]:
    """Maps an issue change onto the automation triggers it raises."""
    if old is None:
        return [AutomationTrigger.ISSUE_CREATED]
    triggers = []
    if old.status != new.status:
        triggers.append(AutomationTrigger.STATUS_CHANGED)
    if new.assigned_department and old.assigned_department != new.assigned_department:
        triggers.append(AutomationTrigger.ISSUE_ASSIGNED)
    if old.priority != new.priority:
        triggers.append(AutomationTrigger.PRIORITY_CHANGED)
    return triggers


def run_automations(
    db, notifier: NotificationService, old: Optional[IssueRecord], new: IssueRecord
) -> list[str]:
    triggers = triggers_for_update(old, new)
    for trigger in triggers:
        fire_rules(db, notifier, trigger, new)
    return triggers
