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
from typing import Any, List, Optional

from shared.types import AiAnalysis, IssueLocation


@dataclass
class CivicIssueDocument:
    """An issue as stored in the `civicIssues` collection (snake_case view)."""

    title: str = ""
    description: str = ""
    category: str = ""
    status: str = "Open"
    priority: str = "Medium"
    reported_by_id: Optional[str] = None
    reported_by: Optional[str] = None
    reported_at: Any = None  # Firestore timestamp or ISO string
    last_updated: Any = None
    location: Optional[IssueLocation] = None
    address: Optional[str] = None
    image_uri: Optional[str] = None
    image_base64: Optional[str] = None
    has_image: bool = False
    assigned_department: str = ""
    admin_notes: str = ""
    public_visible: bool = True
    upvotes: int = 0
    upvoted_by: List[str] = field(default_factory=list)
    ai_analysis: Optional[AiAnalysis] = None
    sentiment_score: Optional[float] = None


@dataclass
class UpvoteResult:
    """Result of toggling a user's upvote on an issue."""

    success: bool
    upvoted: bool
    upvotes: int = 0
    error: Optional[str] = None


@dataclass
class InAppNotification:
    """Schema for a per-user notification stored under users/{uid}/notifications."""

    title: str
    body: str
    type: str
    created_at: Any  # Firestore timestamp created with firestore_v1.SERVER_TIMESTAMP
    read: bool = False
    data: dict = field(default_factory=dict)
    related_issue_id: Optional[str] = None
