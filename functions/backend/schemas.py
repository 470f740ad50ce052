"""
Pydantic schemas for the civic issues API.

Request bodies use the camelCase keys the mobile app and admin portal send.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.constants import (
    MAX_ADMIN_NOTES_LENGTH,
    MAX_COMMENT_LENGTH,
    MAX_DESCRIPTION_LENGTH,
    MAX_TITLE_LENGTH,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class IssueCreateRequest(CamelModel):
    title: str = Field(..., max_length=MAX_TITLE_LENGTH)
    description: str = Field(..., max_length=MAX_DESCRIPTION_LENGTH)
    category: str
    priority: str = "Medium"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    image_base64: Optional[str] = Field(default=None, alias="imageBase64")
    image_path: Optional[str] = Field(default=None, alias="imagePath")
    source: str = "mobile_app"


class IssueResponse(BaseModel):
    issue: dict
    imageUrl: Optional[str] = None


class IssueListResponse(BaseModel):
    issues: list[dict]
    count: int


class NearbyIssue(BaseModel):
    issue: dict
    distanceKm: float


class NearbyIssuesResponse(BaseModel):
    issues: list[NearbyIssue]
    count: int


class ImageUploadRequest(CamelModel):
    image_base64: str = Field(..., alias="imageBase64")


class ImageUploadResponse(BaseModel):
    path: str
    sizeKb: int
    width: int
    height: int


class OfflineSyncRequest(BaseModel):
    items: list[IssueCreateRequest] = Field(..., min_length=1, max_length=50)


class OfflineSyncResponse(BaseModel):
    results: list[dict]
    synced: int
    failed: int


class UpvoteResponse(BaseModel):
    success: bool
    upvoted: bool
    upvotes: int


class IssueUpdateRequest(CamelModel):
    status: Optional[str] = None
    priority: Optional[str] = None
    category: Optional[str] = None
    assigned_department: Optional[str] = Field(default=None, alias="assignedDepartment")
    admin_notes: Optional[str] = Field(
        default=None, alias="adminNotes", max_length=MAX_ADMIN_NOTES_LENGTH
    )
    public_visible: Optional[bool] = Field(default=None, alias="publicVisible")


class CommentRequest(BaseModel):
    text: str = Field(..., max_length=MAX_COMMENT_LENGTH)


class CommentListResponse(BaseModel):
    comments: list[dict]


class UserResponse(BaseModel):
    user: dict


class PushTokenRequest(CamelModel):
    push_token: Optional[str] = Field(default=None, alias="pushToken")


class PreferencesRequest(CamelModel):
    notifications_enabled: Optional[bool] = Field(default=None, alias="notificationsEnabled")
    issue_updates: Optional[bool] = Field(default=None, alias="issueUpdates")
    community_alerts: Optional[bool] = Field(default=None, alias="communityAlerts")
    emergency_alerts: Optional[bool] = Field(default=None, alias="emergencyAlerts")


class NotificationListResponse(BaseModel):
    notifications: list[dict]
    unread: int


class MarkReadResponse(BaseModel):
    updated: int


class LeaderboardResponse(BaseModel):
    entries: list[dict]
    me: Optional[dict] = None


class SeedResponse(BaseModel):
    departments: int
    rules: int
    automationRules: int


class BulkAssignResponse(BaseModel):
    assigned: int


class DepartmentRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    head: str = ""
    email: str = ""
    phone: str = ""
    categories: list[str] = Field(default_factory=list)


class AssignmentRuleRequest(BaseModel):
    category: str = Field(..., min_length=1)
    department: str = Field(..., min_length=1)
    priority: str = "Medium"


class AutomationRuleRequest(BaseModel):
    trigger: Literal["issue_created", "status_changed", "issue_assigned", "priority_changed"]
    description: str = Field(..., min_length=1)
    enabled: bool = True


class BroadcastRequest(CamelModel):
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    body: str = Field(..., min_length=1, max_length=MAX_COMMENT_LENGTH)
    target: Literal["all", "role", "individual"] = "all"
    role: Optional[str] = None
    user_ids: list[str] = Field(default_factory=list, alias="userIds")
    priority: Literal["normal", "high"] = "normal"
    related_issue_id: Optional[str] = Field(default=None, alias="relatedIssueId")


class BroadcastResponse(BaseModel):
    success: bool
    successCount: int
    failureCount: int
    errors: list[str] = Field(default_factory=list)


class SignUrlResponse(BaseModel):
    url: str


class HealthResponse(BaseModel):
    status: Literal["ok"]
