"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException

from arch_backend.config import get_settings
from arch_backend.db import IN_MEMORY_DATABASE_URL, PostgresDbClient
from arch_backend.lifecycle import DailyQuestionLifecycle
from arch_backend.notifications import (
    ExpoPushClient,
    InMemoryPushClient,
    NotificationDispatcher,
    PushClient,
)
from arch_backend.realtime import EventBus, InMemoryEventBus, RedisEventBus
from arch_backend.records import UserRecord
from arch_backend.storage import InMemoryStorageClient, S3StorageClient, StorageClient

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

_db_client: PostgresDbClient | None = None
_push_client: PushClient | None = None
_event_bus: EventBus | None = None
_storage_client: StorageClient | None = None


def get_db_client() -> PostgresDbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        logger.info("Using in-memory sqlite database")
        _db_client = PostgresDbClient(IN_MEMORY_DATABASE_URL)
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_push_client() -> PushClient:
    global _push_client
    if _push_client:
        return _push_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.push_enabled:
        _push_client = InMemoryPushClient()
    else:
        _push_client = ExpoPushClient(
            url=settings.expo_push_url, access_token=settings.expo_access_token
        )
    return _push_client


def get_event_bus() -> EventBus:
    global _event_bus
    if _event_bus:
        return _event_bus

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _event_bus = RedisEventBus(
            url=settings.redis_url, channel_prefix=settings.redis_channel_prefix
        )
    else:
        _event_bus = InMemoryEventBus()
    return _event_bus


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.media_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.media_bucket,
            region=settings.media_region or "",
            endpoint=settings.media_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
        )
    return _storage_client


def get_clock() -> Clock:
    return time.time


def get_notifier(
    db: PostgresDbClient = Depends(get_db_client),
    push_client: PushClient = Depends(get_push_client),
) -> NotificationDispatcher:
    return NotificationDispatcher(db, push_client)


def get_lifecycle(
    db: PostgresDbClient = Depends(get_db_client),
    notifier: NotificationDispatcher = Depends(get_notifier),
    events: EventBus = Depends(get_event_bus),
    clock: Clock = Depends(get_clock),
) -> DailyQuestionLifecycle:
    return DailyQuestionLifecycle(db, notifier, clock=clock, events=events)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def resolve_session_user(
    db: PostgresDbClient, token: Optional[str], now: float
) -> Optional[UserRecord]:
    """Return the active user owning a live session token, else None."""
    if not token:
        return None
    session = db.get_session(token)
    if session is None or session.expires_at <= now:
        return None
    user = db.get_user(session.user_id)
    if user is None or not user.is_active:
        return None
    return user


def get_session_token(authorization: Optional[str] = Header(default=None)) -> str:
    token = bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="No token, authorization denied")
    return token


def get_current_user(
    token: str = Depends(get_session_token),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
) -> UserRecord:
    user = resolve_session_user(db, token, clock())
    if user is None:
        raise HTTPException(status_code=401, detail="Token is not valid")
    return user
