"""
HTTP routes for the civic issues API.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from backend import issues as issue_service
from backend.analytics import compute_analytics
from backend.auth import AuthenticatedUser
from backend.config import Settings, get_settings
from backend.db import (
    AssignmentRuleRecord,
    AutomationRuleRecord,
    DbClient,
    DepartmentRecord,
    IssueNotFoundError,
    IssueRecord,
)
from backend.dependencies import (
    ADMIN_ROLES,
    get_current_user,
    get_db_client,
    get_notification_service,
    get_queue_client,
    get_storage_client,
    require_admin,
)
from backend.images import InvalidImageError
from backend.leaderboard import build_leaderboard, find_entry
from backend.notifications import NotificationPayload, NotificationService, is_valid_push_token
from backend.queue import TriageQueue
from backend.schemas import (
    AssignmentRuleRequest,
    AutomationRuleRequest,
    BroadcastRequest,
    BroadcastResponse,
    BulkAssignResponse,
    CommentListResponse,
    CommentRequest,
    DepartmentRequest,
    HealthResponse,
    ImageUploadRequest,
    ImageUploadResponse,
    IssueCreateRequest,
    IssueListResponse,
    IssueResponse,
    IssueUpdateRequest,
    LeaderboardResponse,
    MarkReadResponse,
    NearbyIssue,
    NearbyIssuesResponse,
    NotificationListResponse,
    OfflineSyncRequest,
    OfflineSyncResponse,
    PreferencesRequest,
    PushTokenRequest,
    SeedResponse,
    SignUrlResponse,
    UpvoteResponse,
    UserResponse,
)
from backend.storage import StorageClient
from shared.constants import DEFAULT_NEARBY_RADIUS_KM
from shared.types import IssuePriority, NotificationTarget, NotificationType
from triage import assignment, automation, duplicates

logger = logging.getLogger(__name__)

router = APIRouter()


def _issue_payload(issue: IssueRecord, storage: StorageClient) -> IssueResponse:
    image_url = storage.presign_get(issue.image_path) if issue.image_path else None
    return IssueResponse(issue=issue.as_dict(), imageUrl=image_url)


def _submission(payload: IssueCreateRequest) -> issue_service.IssueSubmission:
    return issue_service.IssueSubmission(
        title=payload.title,
        description=payload.description,
        category=payload.category,
        priority=payload.priority,
        latitude=payload.latitude,
        longitude=payload.longitude,
        address=payload.address,
        image_base64=payload.image_base64,
        image_path=payload.image_path,
        source=payload.source,
    )


def _is_admin(db: DbClient, uid: str) -> bool:
    profile = db.get_user(uid)
    return bool(profile and profile.role in ADMIN_ROLES)


def _get_visible_issue(db: DbClient, issue_id: str, user: AuthenticatedUser) -> IssueRecord:
    issue = db.get_issue(issue_id)
    if not issue:
        raise HTTPException(status_code=404, detail="Issue not found")
    if not issue.public_visible and issue.reported_by_id != user.uid and not _is_admin(db, user.uid):
        raise HTTPException(status_code=404, detail="Issue not found")
    return issue


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok")


@router.post("/issues/images", response_model=ImageUploadResponse, status_code=201)
def upload_issue_image(
    payload: ImageUploadRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    storage: StorageClient = Depends(get_storage_client),
    settings: Settings = Depends(get_settings),
):
    """
    Stores a photo ahead of the issue document. The returned path is passed
    back as `imagePath` when the issue itself is created.
    """
    try:
        path, image = issue_service.store_image(storage, payload.image_base64, settings)
    except issue_service.IssueValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ImageUploadResponse(path=path, sizeKb=image.size_kb, width=image.width, height=image.height)


@router.post("/issues", response_model=IssueResponse, status_code=201)
def create_issue(
    payload: IssueCreateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    queue: TriageQueue = Depends(get_queue_client),
    settings: Settings = Depends(get_settings),
):
    try:
        issue = issue_service.submit_issue(
            db, storage, queue, user, _submission(payload), settings
        )
    except (issue_service.IssueValidationError, InvalidImageError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _issue_payload(issue, storage)


@router.post("/issues/sync", response_model=OfflineSyncResponse)
def sync_offline_issues(
    payload: OfflineSyncRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    queue: TriageQueue = Depends(get_queue_client),
    settings: Settings = Depends(get_settings),
):
    results = issue_service.sync_offline_batch(
        db, storage, queue, user, [_submission(item) for item in payload.items], settings
    )
    synced = sum(1 for r in results if r["success"])
    return OfflineSyncResponse(results=results, synced=synced, failed=len(results) - synced)


@router.get("/issues", response_model=IssueListResponse)
def list_issues(
    status: Optional[list[str]] = Query(None),
    category: Optional[str] = None,
    priority: Optional[str] = None,
    q: Optional[str] = Query(None, description="Free-text search"),
    limit: int = Query(100, ge=1, le=500),
    user: AuthenticatedUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    issues = db.list_issues(
        statuses=status, category=category, priority=priority, public_only=True
    )
    issues = issue_service.search_issues(issues, q)[:limit]
    return IssueListResponse(issues=[i.as_dict() for i in issues], count=len(issues))


@router.get("/issues/mine", response_model=IssueListResponse)
def my_issues(
    user: AuthenticatedUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    issues = db.list_issues(reporter_id=user.uid)
    return IssueListResponse(issues=[i.as_dict() for i in issues], count=len(issues))


@router.get("/issues/nearby", response_model=NearbyIssuesResponse)
def nearby_issues(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(DEFAULT_NEARBY_RADIUS_KM, gt=0, le=100),
    status: Optional[list[str]] = Query(None),
    category: Optional[list[str]] = Query(None),
    priority: Optional[list[str]] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    results = issue_service.nearby_issues(
        db, lat, lon, radius_km, statuses=status, categories=category, priorities=priority
    )
    return NearbyIssuesResponse(
        issues=[
            NearbyIssue(issue=issue.as_dict(), distanceKm=round(distance, 3))
            for issue, distance in results
        ],
        count=len(results),
    )


@router.get("/issues/{issue_id}", response_model=IssueResponse)
def get_issue(
    issue_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    return _issue_payload(_get_visible_issue(db, issue_id, user), storage)


@router.post("/issues/{issue_id}/upvote", response_model=UpvoteResponse)
def toggle_upvote(
    issue_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    try:
        result = issue_service.toggle_upvote(db, issue_id, user.uid)
    except IssueNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return UpvoteResponse(success=result.success, upvoted=result.upvoted, upvotes=result.upvotes)


@router.get("/issues/{issue_id}/comments", response_model=CommentListResponse)
def list_comments(
    issue_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    _get_visible_issue(db, issue_id, user)
    return CommentListResponse(comments=[c.as_dict() for c in db.list_comments(issue_id)])


@router.post("/issues/{issue_id}/comments", response_model=CommentListResponse, status_code=201)
def add_comment(
    issue_id: str,
    payload: CommentRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    try:
        issue_service.add_comment(db, issue_id, admin, payload.text)
    except IssueNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except issue_service.IssueValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return CommentListResponse(comments=[c.as_dict() for c in db.list_comments(issue_id)])


@router.get("/users/me", response_model=UserResponse)
def get_me(
    user: AuthenticatedUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    profile = db.get_user(user.uid)
    return UserResponse(user=profile.as_dict())


@router.put("/users/me/push-token", response_model=UserResponse)
def set_push_token(
    payload: PushTokenRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    if payload.push_token and not is_valid_push_token(payload.push_token):
        raise HTTPException(status_code=400, detail="Invalid Expo push token")
    profile = db.update_user(user.uid, push_token=payload.push_token or None)
    return UserResponse(user=profile.as_dict())


@router.put("/users/me/preferences", response_model=UserResponse)
def update_preferences(
    payload: PreferencesRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    profile = db.get_user(user.uid)
    preferences = dict(profile.notification_preferences or {})
    for key in ("issue_updates", "community_alerts", "emergency_alerts"):
        value = getattr(payload, key)
        if value is not None:
            preferences[key] = value
    updates = {"notification_preferences": preferences}
    if payload.notifications_enabled is not None:
        updates["notifications_enabled"] = payload.notifications_enabled
    profile = db.update_user(user.uid, **updates)
    return UserResponse(user=profile.as_dict())


@router.get("/notifications", response_model=NotificationListResponse)
def list_notifications(
    limit: int = Query(100, ge=1, le=500),
    user: AuthenticatedUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    items = db.list_notifications(user.uid, limit=limit)
    return NotificationListResponse(
        notifications=[n.as_dict() for n in items],
        unread=db.count_unread_notifications(user.uid),
    )


@router.post("/notifications/read-all", response_model=MarkReadResponse)
def mark_all_read(
    user: AuthenticatedUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    return MarkReadResponse(updated=db.mark_all_notifications_read(user.uid))


@router.post("/notifications/{notification_id}/read", response_model=MarkReadResponse)
def mark_read(
    notification_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    if not db.mark_notification_read(user.uid, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return MarkReadResponse(updated=1)


@router.get("/leaderboard", response_model=LeaderboardResponse)
def leaderboard(
    user: AuthenticatedUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    entries = build_leaderboard(db)
    me = find_entry(entries, user.uid)
    return LeaderboardResponse(
        entries=[e.as_dict() for e in entries], me=me.as_dict() if me else None
    )


@router.get("/admin/issues", response_model=IssueListResponse)
def admin_list_issues(
    status: Optional[list[str]] = Query(None),
    category: Optional[str] = None,
    priority: Optional[str] = None,
    department: Optional[str] = None,
    q: Optional[str] = None,
    limit: int = Query(500, ge=1, le=5000),
    admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    issues = db.list_issues(
        statuses=status,
        category=category,
        priority=priority,
        assigned_department=department,
    )
    issues = issue_service.search_issues(issues, q)[:limit]
    return IssueListResponse(issues=[i.as_dict() for i in issues], count=len(issues))


@router.patch("/admin/issues/{issue_id}", response_model=IssueResponse)
def admin_update_issue(
    issue_id: str,
    payload: IssueUpdateRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    notifier: NotificationService = Depends(get_notification_service),
):
    try:
        issue = issue_service.update_issue_as_admin(
            db,
            notifier,
            issue_id,
            admin,
            status=payload.status,
            priority=payload.priority,
            category=payload.category,
            assigned_department=payload.assigned_department,
            admin_notes=payload.admin_notes,
            public_visible=payload.public_visible,
        )
    except IssueNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except issue_service.IssueValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _issue_payload(issue, storage)


@router.post("/admin/issues/{issue_id}/clear-duplicate", response_model=IssueResponse)
def admin_clear_duplicate(
    issue_id: str,
    admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    issue = duplicates.clear_duplicate_flag(db, issue_id)
    if not issue:
        raise HTTPException(status_code=404, detail="Issue not found")
    return _issue_payload(issue, storage)


@router.post("/admin/auto-assign", response_model=BulkAssignResponse)
def admin_bulk_auto_assign(
    admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return BulkAssignResponse(assigned=assignment.run_bulk_auto_assign(db))


@router.post("/admin/seed-defaults", response_model=SeedResponse)
def admin_seed_defaults(
    admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return SeedResponse(
        departments=assignment.seed_default_departments(db),
        rules=assignment.seed_default_rules(db),
        automationRules=automation.seed_default_automation_rules(db),
    )


@router.get("/admin/departments")
def admin_list_departments(
    admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return {"departments": [d.as_dict() for d in db.list_departments()]}


@router.post("/admin/departments", status_code=201)
def admin_create_department(
    payload: DepartmentRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if any(d.name.lower() == payload.name.strip().lower() for d in db.list_departments()):
        raise HTTPException(status_code=400, detail="Department already exists")
    department = db.create_department(
        DepartmentRecord(
            name=payload.name.strip(),
            description=payload.description,
            head=payload.head,
            email=payload.email,
            phone=payload.phone,
            categories=payload.categories,
        )
    )
    return {"department": department.as_dict()}


@router.get("/admin/assignment-rules")
def admin_list_assignment_rules(
    admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return {"rules": [r.as_dict() for r in db.list_assignment_rules()]}


@router.post("/admin/assignment-rules", status_code=201)
def admin_create_assignment_rule(
    payload: AssignmentRuleRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    try:
        priority = IssuePriority(payload.priority)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid priority")
    rule = db.create_assignment_rule(
        AssignmentRuleRecord(
            category=payload.category.strip(),
            department=payload.department.strip(),
            priority=priority,
        )
    )
    return {"rule": rule.as_dict()}


@router.get("/admin/automation-rules")
def admin_list_automation_rules(
    admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return {"rules": [r.as_dict() for r in db.list_automation_rules()]}


@router.post("/admin/automation-rules", status_code=201)
def admin_create_automation_rule(
    payload: AutomationRuleRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    rule = db.create_automation_rule(
        AutomationRuleRecord(
            trigger=payload.trigger,
            description=payload.description,
            enabled=payload.enabled,
        )
    )
    return {"rule": rule.as_dict()}


@router.get("/admin/analytics")
def admin_analytics(
    days: int = Query(30, ge=1, le=365),
    department: Optional[str] = None,
    admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    report = compute_analytics(db.list_issues(), days=days, department=department)
    return asdict(report)


@router.post("/admin/notifications/broadcast", response_model=BroadcastResponse)
def admin_broadcast(
    payload: BroadcastRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    notifier: NotificationService = Depends(get_notification_service),
):
    notification = NotificationPayload(
        title=payload.title,
        body=payload.body,
        type=NotificationType.BULK if payload.target != "individual" else NotificationType.MANUAL,
        target=NotificationTarget(payload.target),
        priority=payload.priority,
        related_issue_id=payload.related_issue_id,
        sent_by=admin.email or admin.uid,
    )
    if payload.target == "individual":
        if not payload.user_ids:
            raise HTTPException(status_code=400, detail="userIds required for individual target")
        result = notifier.send_bulk(notification, payload.user_ids)
    elif payload.target == "role":
        if not payload.role:
            raise HTTPException(status_code=400, detail="role required for role target")
        result = notifier.broadcast(notification, role=payload.role)
    else:
        result = notifier.broadcast(notification)
    return BroadcastResponse(
        success=result.success,
        successCount=result.success_count,
        failureCount=result.failure_count,
        errors=result.errors,
    )


@router.get("/admin/notifications/logs")
def admin_notification_logs(
    limit: int = Query(100, ge=1, le=500),
    admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return {"logs": [log.as_dict() for log in db.list_notification_logs(limit=limit)]}


@router.get("/sign-url", response_model=SignUrlResponse)
def sign_url(
    path: str = Query(..., description="Object path in storage"),
    op: str = Query("get", pattern="^(get|put)$"),
    expires_in: int = Query(3600, ge=60, le=86400),
    user: AuthenticatedUser = Depends(get_current_user),
    storage: StorageClient = Depends(get_storage_client),
):
    if not path.startswith("issues/"):
        raise HTTPException(status_code=400, detail="Path outside issue storage")
    if op == "get":
        url = storage.presign_get(path, expires_in=expires_in)
    else:
        url = storage.presign_put(path, expires_in=expires_in)
    return SignUrlResponse(url=url)
