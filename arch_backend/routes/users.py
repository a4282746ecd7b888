"""
Profile, settings, search, dashboard and account endpoints.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from arch_backend.db import PostgresDbClient
from arch_backend.dependencies import (
    Clock,
    get_clock,
    get_current_user,
    get_db_client,
    get_lifecycle,
)
from arch_backend.errors import NotFound
from arch_backend.lifecycle import DailyQuestionLifecycle
from arch_backend.membership import is_member, member_role
from arch_backend.records import Lifecycle, MemberRole, UserRecord
from arch_backend.routes.common import (
    SECONDS_PER_DAY,
    recent_questions,
    todays_questions,
    user_arches,
)
from arch_backend.schemas import (
    DeleteAccountRequest,
    NotificationSettingsUpdate,
    PasswordChangeRequest,
    ProfileUpdateRequest,
)
from arch_backend.security import hash_password, verify_password
from arch_backend.serializers import (
    arch_json,
    question_json,
    question_user_ids,
    user_profile,
    user_summary,
)
from arch_backend.stats import percent, response_stats, streak
from arch_backend.timeutils import local_date, to_iso

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/profile")
def get_profile(user: UserRecord = Depends(get_current_user)):
    return user_profile(user)


@router.put("/profile")
def update_profile(
    payload: ProfileUpdateRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    fields = payload.model_dump(exclude_none=True)
    if "name" in fields:
        fields["name"] = fields["name"].strip()
        if not fields["name"]:
            raise HTTPException(status_code=400, detail="Name cannot be empty")
    updated = db.update_user(user.user_id, **fields)
    return {"message": "Profile updated successfully", "user": user_profile(updated)}


@router.put("/notification-settings")
def update_notification_settings(
    payload: NotificationSettingsUpdate,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    settings = replace(
        user.notification_settings, **payload.model_dump(exclude_none=True)
    )
    updated = db.update_user(user.user_id, notification_settings=settings)
    return {
        "message": "Notification settings updated",
        "notificationSettings": user_profile(updated)["notificationSettings"],
    }


@router.put("/password")
def change_password(
    payload: PasswordChangeRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    if not verify_password(payload.current_password, user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    db.update_user(user.user_id, password_hash=hash_password(payload.new_password))
    return {"message": "Password updated successfully"}


@router.get("/search")
def search_users(
    query: str = Query(default=""),
    arch_id: Optional[str] = Query(default=None, alias="archId"),
    limit: int = Query(default=10, ge=1, le=50),
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    if len(query.strip()) < 2:
        raise HTTPException(
            status_code=400, detail="Search query must be at least 2 characters"
        )
    arches = user_arches(db, user.user_id, arch_id)
    candidates = {uid for arch in arches for uid in arch.member_ids}
    users = db.search_users(
        query, user_ids=candidates, exclude_user_id=user.user_id, limit=limit
    )
    return {"users": [user_summary(u.user_id, {u.user_id: u}) for u in users]}


@router.get("/dashboard")
def dashboard(
    arch_id: Optional[str] = Query(default=None, alias="archId"),
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    lifecycle: DailyQuestionLifecycle = Depends(get_lifecycle),
    clock: Clock = Depends(get_clock),
):
    now = clock()
    arches = user_arches(db, user.user_id, arch_id)
    today = todays_questions(db, arches, now, asker_id=user.user_id)
    answered = [q for q in today if q.response_for(user.user_id) is not None]
    unanswered = [
        q for q in today if q.response_for(user.user_id) is None and q.deadline > now
    ]
    about_me = [
        q
        for q in recent_questions(db, arches, now, 7, about_user_id=user.user_id)
        if q.processed and q.responses
    ][:10]
    month = recent_questions(db, arches, now, 30, asker_id=user.user_id)
    month_stats = response_stats(month, user.user_id)
    upcoming = sorted(
        (q for q in today if not q.processed and q.deadline > now),
        key=lambda q: q.deadline,
    )[:5]

    users = db.get_users(question_user_ids(today + about_me) | {user.user_id})
    return {
        "user": {
            **user_summary(user.user_id, users),
            "arches": [{"id": a.arch_id, "name": a.name} for a in arches],
        },
        "today": {
            "answered": len(answered),
            "unanswered": len(unanswered),
            "total": len(today),
            "questions": {
                "answered": [question_json(q, users) for q in answered],
                "unanswered": [question_json(q, users) for q in unanswered],
            },
        },
        "recentResponsesAboutMe": [question_json(q, users) for q in about_me],
        "stats": {
            "thirtyDayResponseRate": month_stats["responseRate"],
            "totalQuestionsAsked": month_stats["totalQuestions"],
            "totalQuestionsAnswered": month_stats["questionsAnswered"],
        },
        "upcomingDeadlines": [
            {
                "questionId": q.question_id,
                "question": q.question,
                "aboutUser": user_summary(q.about_user_id, users),
                "archId": q.arch_id,
                "deadline": to_iso(q.deadline),
                "minutesLeft": lifecycle.minutes_remaining(q),
            }
            for q in upcoming
        ],
    }


@router.get("/arches")
def list_my_arches(
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    arches = db.list_arches_for_user(user.user_id)
    users = db.get_users(uid for arch in arches for uid in arch.member_ids)
    return {
        "arches": [
            {**arch_json(arch, users), "role": member_role(arch, user.user_id).value}
            for arch in arches
        ]
    }


@router.post("/leave-arch/{arch_id}")
def leave_arch(
    arch_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    arch = db.get_arch(arch_id)
    if arch is None:
        raise NotFound("Arch not found")
    if not is_member(arch, user.user_id):
        raise HTTPException(status_code=400, detail="You are not a member of this arch")
    if (
        arch.creator_id == user.user_id
        and member_role(arch, user.user_id) == MemberRole.ADMIN
        and len(arch.members) > 1
    ):
        raise HTTPException(
            status_code=400,
            detail="You must transfer ownership or remove all other members before leaving",
        )
    db.remove_member(arch_id, user.user_id)
    logger.info("User %s left arch %s", user.user_id, arch_id)
    return {"message": "Successfully left the arch"}


@router.get("/activity")
def activity(
    days: int = Query(default=7, ge=1, le=365),
    arch_id: Optional[str] = Query(default=None, alias="archId"),
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    now = clock()
    since = now - days * SECONDS_PER_DAY
    arches = user_arches(db, user.user_id, arch_id)
    questions = recent_questions(db, arches, now, days)
    asked = [q for q in questions if q.asker_id == user.user_id]
    answered = [q for q in asked if q.response_for(user.user_id) is not None]
    about = [q for q in questions if q.about_user_id == user.user_id]
    received = sum(1 for q in about for r in q.responses if not r.passed)
    posts = sum(
        db.count_posts(a.arch_id, author_id=user.user_id, since=since) for a in arches
    )
    messages = sum(
        1
        for a in arches
        for m in db.list_arch_messages(a.arch_id, since=since)
        if m.sender_id == user.user_id
    )
    return {
        "period": f"{days} days",
        "questionsAsked": len(asked),
        "questionsAnswered": len(answered),
        "questionsAboutUser": len(about),
        "responsesReceived": received,
        "postsCreated": posts,
        "messagesSent": messages,
        "responseRate": percent(len(answered), len(asked)),
    }


@router.get("/stats")
def stats(
    days: int = Query(default=30, ge=1, le=365),
    arch_id: Optional[str] = Query(default=None, alias="archId"),
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    now = clock()
    arches = user_arches(db, user.user_id, arch_id)
    questions = recent_questions(db, arches, now, days, asker_id=user.user_id)
    streak_questions = recent_questions(db, arches, now, 30, asker_id=user.user_id)
    today = local_date(arches[0].settings.timezone if arches else user.timezone, now)
    return {
        "responseStats": response_stats(questions, user.user_id),
        "archParticipation": [
            {
                "archId": arch.arch_id,
                "name": arch.name,
                "role": member_role(arch, user.user_id).value,
                **response_stats(
                    [q for q in questions if q.arch_id == arch.arch_id], user.user_id
                ),
            }
            for arch in arches
        ],
        "streakInfo": streak(streak_questions, user.user_id, today),
        "period": f"{days} days",
    }


@router.delete("/account")
def delete_account(
    payload: DeleteAccountRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    if not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=400, detail="Incorrect password")
    now = clock()
    db.update_user(
        user.user_id,
        email=f"deleted_{int(now * 1000)}_{user.email}",
        push_token=None,
        lifecycle=Lifecycle.DELETED,
        now=now,
    )
    db.delete_user_sessions(user.user_id)
    logger.info("Deactivated account %s", user.user_id)
    return {"message": "Account deactivated successfully"}
