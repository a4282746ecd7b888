"""
Registration, login, sessions and push-token registration.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from arch_backend.config import Settings, get_settings
from arch_backend.db import PostgresDbClient
from arch_backend.dependencies import (
    Clock,
    get_clock,
    get_current_user,
    get_db_client,
    get_notifier,
    get_session_token,
)
from arch_backend.notifications import NotificationDispatcher
from arch_backend.records import UserRecord
from arch_backend.schemas import LoginRequest, PushTokenRequest, RegisterRequest
from arch_backend.security import hash_password, new_session_token, verify_password
from arch_backend.serializers import arch_json, user_profile

logger = logging.getLogger(__name__)

router = APIRouter()


def _issue_session(
    db: PostgresDbClient, user: UserRecord, settings: Settings, now: float
) -> dict:
    token = new_session_token()
    db.create_session(
        user.user_id, token, now + settings.session_ttl_minutes * 60
    )
    return {"token": token, "user": user_profile(user)}


@router.post("/register", status_code=201)
def register(
    payload: RegisterRequest,
    db: PostgresDbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
):
    if db.get_user_by_email(payload.email):
        raise HTTPException(status_code=400, detail="User already exists")
    now = clock()
    user = db.create_user(
        payload.name,
        payload.email,
        hash_password(payload.password),
        timezone=payload.timezone or "America/New_York",
        now=now,
    )
    logger.info("Registered user %s", user.user_id)
    return _issue_session(db, user, settings, now)


@router.post("/login")
def login(
    payload: LoginRequest,
    db: PostgresDbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
):
    user = db.get_user_by_email(payload.email)
    if user is None or not user.is_active:
        raise HTTPException(status_code=400, detail="Invalid credentials")
    if not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    return _issue_session(db, user, settings, clock())


@router.post("/logout")
def logout(
    token: str = Depends(get_session_token),
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    db.delete_session(token)
    return {"message": "Logged out"}


@router.get("/me")
def me(
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    arches = db.list_arches_for_user(user.user_id)
    users = db.get_users(uid for arch in arches for uid in arch.member_ids)
    profile = user_profile(user)
    profile["arches"] = [arch_json(arch, users) for arch in arches]
    return profile


@router.post("/push-token")
def set_push_token(
    payload: PushTokenRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    db.update_user(user.user_id, push_token=payload.token.strip())
    logger.info("Updated push token for user %s", user.user_id)
    return {"message": "Push token updated successfully"}


@router.delete("/push-token")
def remove_push_token(
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    db.update_user(user.user_id, push_token=None)
    return {"message": "Push token removed successfully"}


@router.post("/test-notification")
def test_notification(
    user: UserRecord = Depends(get_current_user),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    sent = notifier.send_to_user(
        user.user_id,
        "🧪 Test Notification",
        "This is a test notification from The Arch!",
        {"type": "test"},
    )
    if not sent:
        raise HTTPException(status_code=400, detail="Failed to send test notification")
    return {"message": "Test notification sent successfully"}
