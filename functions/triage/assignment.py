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
Department routing for civic issues.

Rules map a category to a department. New issues are routed as they arrive;
`run_bulk_auto_assign` sweeps everything still unassigned.
"""

import logging
from typing import Optional, Sequence

from backend.db import AssignmentRuleRecord, CommentRecord, DepartmentRecord
from shared.types import CommentType, IssuePriority

logger = logging.getLogger(__name__)

DEFAULT_DEPARTMENTS = [
    DepartmentRecord(
        name="Public Works",
        description="Handles road maintenance, construction, and infrastructure repairs",
        categories=["Roads"],
    ),
    DepartmentRecord(
        name="Water & Sanitation",
        description="Manages water supply, sewage, drainage, and waste collection",
        categories=["Water Leak", "Garbage"],
    ),
    DepartmentRecord(
        name="Electrical",
        description="Manages street lighting, power supply, and electrical infrastructure",
        categories=["Streetlight"],
    ),
    DepartmentRecord(
        name="Environment",
        description="Handles pollution, green cover, and environmental compliance",
        categories=["Pollution"],
    ),
    DepartmentRecord(
        name="General Administration",
        description="Handles miscellaneous civic issues and general inquiries",
        categories=["Other"],
    ),
]

DEFAULT_RULES = [
    ("Roads", "Public Works", IssuePriority.MEDIUM),
    ("Water Leak", "Water & Sanitation", IssuePriority.HIGH),
    ("Garbage", "Water & Sanitation", IssuePriority.MEDIUM),
    ("Streetlight", "Electrical", IssuePriority.MEDIUM),
    ("Pollution", "Environment", IssuePriority.HIGH),
    ("Other", "General Administration", IssuePriority.LOW),
]


def seed_default_departments(db) -> int:
    """Creates any default department missing by name. Returns how many were added."""
    existing = {d.name for d in db.list_departments()}
    created = 0
    for template in DEFAULT_DEPARTMENTS:
        if template.name in existing:
            continue
        db.create_department(
            DepartmentRecord(
                name=template.name,
                description=template.description,
                categories=list(template.categories),
            )
        )
        created += 1
    return created


def seed_default_rules(db) -> int:
    """Creates any default rule missing by category. Returns how many were added."""
    existing = {r.category for r in db.list_assignment_rules()}
    created = 0
    for category, department, priority in DEFAULT_RULES:
        if category in existing:
            continue
        db.create_assignment_rule(
            AssignmentRuleRecord(category=category, department=department, priority=priority)
        )
        created += 1
    return created


def match_rule(
    rules: Sequence[AssignmentRuleRecord], category: Optional[str]
) -> Optional[AssignmentRuleRecord]:
    wanted = (category or "").lower()
    for rule in rules:
        if rule.enabled and rule.category.lower() == wanted:
            return rule
    return None


def assign_issue(db, issue, rules: Sequence[AssignmentRuleRecord]) -> Optional[str]:
    """
    Assigns a single issue to a department based on active rules.
    Returns the department name if assigned, None otherwise.
    """
    rule = match_rule(rules, issue.category)
    if not rule:
        return None

    db.update_issue(issue.issue_id, assigned_department=rule.department)
    db.add_comment(
        CommentRecord(
            issue_id=issue.issue_id,
            text=(
                f'Auto-assigned to "{rule.department}" based on category '
                f'"{issue.category}"'
            ),
            author="System",
            author_email="auto-assign@system",
            type=CommentType.ASSIGNMENT,
        )
    )
    logger.info("Auto-assigned issue %s -> %s", issue.issue_id, rule.department)
    return rule.department


def run_bulk_auto_assign(db) -> int:
    """Routes every unassigned issue. Returns the number of issues assigned."""
    rules = [r for r in db.list_assignment_rules() if r.enabled]
    if not rules:
        logger.warning("No active auto-assignment rules found")
        return 0

    unassigned = db.list_issues(assigned_department="")
    assigned = 0
    for issue in unassigned:
        try:
            if assign_issue(db, issue, rules):
                assigned += 1
        except Exception:
            logger.exception("Failed to auto-assign issue %s", issue.issue_id)
    logger.info(
        "Bulk auto-assign complete: %d/%d issues routed", assigned, len(unassigned)
    )
    return assigned
