"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException

from backend.auth import (
    AuthenticatedUser,
    FirebaseTokenVerifier,
    InvalidTokenError,
    StaticTokenVerifier,
    TokenVerifier,
    parse_bearer_token,
)
from backend.config import get_settings
from backend.db import DbClient, InMemoryDbClient, PostgresDbClient
from backend.notifications import (
    ExpoPushClient,
    InMemoryPushClient,
    NotificationService,
    PushClient,
)
from backend.queue import InMemoryTriageQueue, TriageQueue, RedisTriageQueue
from backend.storage import InMemoryStorageClient, S3StorageClient, StorageClient
from shared.types import UserRole, UserStatus

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_queue_client: TriageQueue | None = None
_push_client: PushClient | None = None
_token_verifier: TokenVerifier | None = None

ADMIN_ROLES = (UserRole.ADMIN, UserRole.MODERATOR, UserRole.DEPARTMENT_HEAD)


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so issue and user state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.storage_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.storage_bucket,
            region=settings.storage_region or "",
            endpoint=settings.storage_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
        )
    return _storage_client


def get_queue_client() -> TriageQueue:
    """
    Return a singleton queue client for dispatching triage jobs to workers.
    """
    global _queue_client
    if _queue_client:
        return _queue_client

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _queue_client = RedisTriageQueue(
            url=settings.redis_url,
            queue_key=settings.redis_queue_key,
        )
    else:
        _queue_client = InMemoryTriageQueue()
    return _queue_client


def get_push_client() -> PushClient:
    global _push_client
    if _push_client:
        return _push_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _push_client = InMemoryPushClient()
    else:
        _push_client = ExpoPushClient(settings.expo_push_url)
    return _push_client


def get_notification_service(
    db: DbClient = Depends(get_db_client),
    push: PushClient = Depends(get_push_client),
) -> NotificationService:
    return NotificationService(db, push)


def get_token_verifier() -> TokenVerifier:
    global _token_verifier
    if _token_verifier:
        return _token_verifier

    settings = get_settings()
    if settings.use_firebase_auth and not settings.use_in_memory_backends:
        _token_verifier = FirebaseTokenVerifier()
    else:
        _token_verifier = StaticTokenVerifier()
    return _token_verifier


def get_current_user(
    authorization: str | None = Header(default=None),
    verifier: TokenVerifier = Depends(get_token_verifier),
    db: DbClient = Depends(get_db_client),
) -> AuthenticatedUser:
    try:
        user = verifier.verify(parse_bearer_token(authorization))
    except InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e))

    profile = db.ensure_user(user.uid, user.email, user.display_name)
    if profile.status == UserStatus.SUSPENDED:
        raise HTTPException(status_code=403, detail="Account suspended")
    return user


def require_admin(
    user: AuthenticatedUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
) -> AuthenticatedUser:
    profile = db.get_user(user.uid)
    if not profile or profile.role not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
