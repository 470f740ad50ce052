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


from dataclasses import dataclass, field
from enum import StrEnum
from typing import List, Optional


class IssueStatus(StrEnum):
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"


class IssuePriority(StrEnum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


# Ascending order of urgency, used when escalating a priority by one step.
PRIORITY_ORDER = [
    IssuePriority.LOW,
    IssuePriority.MEDIUM,
    IssuePriority.HIGH,
    IssuePriority.CRITICAL,
]


class UserRole(StrEnum):
    CITIZEN = "citizen"
    ADMIN = "admin"
    MODERATOR = "moderator"
    DEPARTMENT_HEAD = "department_head"


class UserStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class CommentType(StrEnum):
    COMMENT = "comment"
    STATUS_CHANGE = "status_change"
    ASSIGNMENT = "assignment"


class NotificationType(StrEnum):
    MANUAL = "manual"
    AUTOMATED = "automated"
    BULK = "bulk"
    ISSUE_UPDATE = "issue_update"


class NotificationTarget(StrEnum):
    ALL = "all"
    INDIVIDUAL = "individual"
    ROLE = "role"


class AutomationTrigger(StrEnum):
    ISSUE_CREATED = "issue_created"
    STATUS_CHANGED = "status_changed"
    ISSUE_ASSIGNED = "issue_assigned"
    PRIORITY_CHANGED = "priority_changed"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class IssueLocation:
    latitude: float
    longitude: float
    address: Optional[str] = None


@dataclass
class AiAnalysis:
    """Result of labeling an issue photo with the vision model."""

    suggested_category: str
    confidence: float
    description: str
    severity: str
    tags: List[str] = field(default_factory=list)
    analyzed_at: Optional[str] = None


@dataclass
class TriageResult:
    """Fields the triage function writes back onto an issue."""

    category: str
    priority: str
    sentiment_score: float
    ai_analysis: Optional[AiAnalysis] = None


@dataclass
class DuplicateMatch:
    issue_id: str
    title: str
    score: float
    distance: float
    category: str
