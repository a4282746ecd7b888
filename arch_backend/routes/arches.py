"""
Arch (family group) management endpoints.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from arch_backend.db import PostgresDbClient
from arch_backend.dependencies import (
    Clock,
    get_clock,
    get_current_user,
    get_db_client,
    get_event_bus,
    get_notifier,
)
from arch_backend.errors import Forbidden, NotFound
from arch_backend.membership import (
    is_member,
    load_admin_arch,
    load_member_arch,
    member_role,
)
from arch_backend.notifications import NotificationDispatcher
from arch_backend.realtime import EventBus, broadcast
from arch_backend.records import ArchRecord, ArchSettings, Lifecycle, UserRecord
from arch_backend.routes.common import SECONDS_PER_DAY
from arch_backend.schemas import (
    CreateArchRequest,
    JoinArchRequest,
    RoleUpdateRequest,
    UpdateArchRequest,
)
from arch_backend.security import new_invite_code, normalize_invite_code
from arch_backend.serializers import arch_json, user_summary
from arch_backend.stats import active_user_count, per_day, percent
from arch_backend.timeutils import days_before, local_date, to_iso

logger = logging.getLogger(__name__)

router = APIRouter()

INVITE_CODE_ATTEMPTS = 10


def _unique_invite_code(db: PostgresDbClient) -> str:
    for _ in range(INVITE_CODE_ATTEMPTS):
        code = new_invite_code()
        if not db.invite_code_exists(code):
            return code
    raise RuntimeError("Could not generate a unique invite code")


def _render(db: PostgresDbClient, arch: ArchRecord, viewer_id: str) -> dict:
    users = db.get_users(arch.member_ids + [arch.creator_id])
    payload = arch_json(arch, users)
    role = member_role(arch, viewer_id)
    payload["userRole"] = role.value if role else None
    return payload


@router.post("", status_code=201)
def create_arch(
    payload: CreateArchRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    settings = (
        payload.settings.merged_with(ArchSettings())
        if payload.settings
        else ArchSettings()
    )
    arch = db.create_arch(
        payload.name,
        user.user_id,
        _unique_invite_code(db),
        description=payload.description.strip(),
        settings=settings,
        now=clock(),
    )
    logger.info("User %s created arch %s", user.user_id, arch.arch_id)
    return _render(db, arch, user.user_id)


@router.post("/join")
def join_arch(
    payload: JoinArchRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    notifier: NotificationDispatcher = Depends(get_notifier),
    events: EventBus = Depends(get_event_bus),
    clock: Clock = Depends(get_clock),
):
    arch = db.get_arch_by_invite_code(normalize_invite_code(payload.invite_code))
    if arch is None:
        raise HTTPException(status_code=404, detail="Invalid invite code")
    if is_member(arch, user.user_id) or not db.add_member(
        arch.arch_id, user.user_id, now=clock()
    ):
        raise HTTPException(
            status_code=400, detail="You are already a member of this arch"
        )
    notifier.send_to_arch(
        arch.arch_id,
        "👋 New family member!",
        f"{user.name} joined the arch",
        exclude_user_id=user.user_id,
        data={"type": "member_joined", "archId": arch.arch_id, "memberId": user.user_id},
    )
    broadcast(
        events,
        arch.arch_id,
        "member-joined",
        {"user": user_summary(user.user_id, {user.user_id: user})},
    )
    return _render(db, db.get_arch(arch.arch_id), user.user_id)


@router.get("")
def list_arches(
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    now = clock()
    week_ago = now - 7 * SECONDS_PER_DAY
    results = []
    for arch in db.list_arches_for_user(user.user_id):
        payload = _render(db, arch, user.user_id)
        member = next(m for m in arch.members if m.user_id == user.user_id)
        today = local_date(arch.settings.timezone, now)
        payload["joinedAt"] = to_iso(member.joined_at)
        payload["recentActivity"] = {
            "questions": len(
                db.list_questions(arch_id=arch.arch_id, since_date=days_before(today, 7))
            ),
            "posts": db.count_posts(arch.arch_id, since=week_ago),
            "messages": len(db.list_arch_messages(arch.arch_id, since=week_ago)),
        }
        results.append(payload)
    return results


@router.get("/{arch_id}")
def get_arch(
    arch_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    arch = load_member_arch(db, arch_id, user.user_id)
    payload = _render(db, arch, user.user_id)
    payload["stats"] = {
        "totalQuestions": len(db.list_questions(arch_id=arch_id)),
        "totalPosts": db.count_posts(arch_id),
        "totalMessages": len(db.list_arch_messages(arch_id)),
        "totalEvents": db.count_get_togethers(arch_id),
        "memberCount": len(arch.members),
    }
    return payload


@router.put("/{arch_id}")
def update_arch(
    arch_id: str,
    payload: UpdateArchRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    arch = load_admin_arch(db, arch_id, user.user_id)
    updated = db.update_arch(
        arch_id,
        name=payload.name.strip() if payload.name else None,
        description=payload.description.strip()
        if payload.description is not None
        else None,
        settings=payload.settings.merged_with(arch.settings) if payload.settings else None,
        now=clock(),
    )
    notifier.send_to_arch(
        arch_id,
        "⚙️ Arch settings updated",
        f"{user.name} updated the arch settings",
        exclude_user_id=user.user_id,
        data={"type": "arch_updated", "archId": arch_id},
    )
    return _render(db, updated, user.user_id)


@router.put("/{arch_id}/members/{member_id}/role")
def change_member_role(
    arch_id: str,
    member_id: str,
    payload: RoleUpdateRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    arch = load_admin_arch(db, arch_id, user.user_id)
    if arch.creator_id == member_id:
        raise HTTPException(status_code=400, detail="Cannot change creator role")
    if not is_member(arch, member_id):
        raise NotFound("User is not a member of this arch")
    db.set_member_role(arch_id, member_id, payload.role)
    target = db.get_user(member_id)
    notifier.send_to_arch(
        arch_id,
        "👑 Role updated",
        f"{user.name} changed {target.name if target else 'a member'}'s role to {payload.role.value}",
        exclude_user_id=user.user_id,
        data={
            "type": "role_changed",
            "archId": arch_id,
            "targetUserId": member_id,
            "newRole": payload.role.value,
        },
    )
    return {
        "message": "Role updated successfully",
        "member": {"userId": member_id, "role": payload.role.value},
    }


@router.delete("/{arch_id}/members/{member_id}")
def remove_member(
    arch_id: str,
    member_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    arch = load_admin_arch(db, arch_id, user.user_id)
    if arch.creator_id == member_id:
        raise HTTPException(status_code=400, detail="Cannot remove arch creator")
    if member_id == user.user_id:
        raise HTTPException(
            status_code=400, detail="Use leave arch endpoint to remove yourself"
        )
    if not db.remove_member(arch_id, member_id):
        raise NotFound("User is not a member of this arch")
    notifier.send_to_user(
        member_id,
        "👋 Removed from arch",
        f"You were removed from {arch.name} by {user.name}",
        {"type": "member_removed", "archId": arch_id, "removedUserId": member_id},
    )
    return {"message": "Member removed successfully"}


@router.post("/{arch_id}/regenerate-invite")
def regenerate_invite(
    arch_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    load_admin_arch(db, arch_id, user.user_id)
    updated = db.update_arch(arch_id, invite_code=_unique_invite_code(db), now=clock())
    logger.info("Invite code regenerated for arch %s", arch_id)
    return {
        "message": "Invite code regenerated successfully",
        "inviteCode": updated.invite_code,
    }


@router.delete("/{arch_id}")
def delete_arch(
    arch_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    arch = db.get_arch(arch_id)
    if arch is None:
        raise NotFound("Arch not found")
    if arch.creator_id != user.user_id:
        raise Forbidden("Only the arch creator can delete this arch")
    notifier.send_to_arch(
        arch_id,
        "🗑️ Arch deleted",
        f'{user.name} deleted the arch "{arch.name}"',
        data={"type": "arch_deleted", "archName": arch.name},
    )
    db.update_arch(arch_id, lifecycle=Lifecycle.DELETED, now=clock())
    logger.info("Arch %s deleted by creator %s", arch_id, user.user_id)
    return {"message": "Arch deleted successfully"}


@router.get("/{arch_id}/activity")
def arch_activity(
    arch_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    days: int = Query(default=7, ge=1, le=365),
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    arch = load_member_arch(db, arch_id, user.user_id)
    now = clock()
    since = now - days * SECONDS_PER_DAY
    today = local_date(arch.settings.timezone, now)
    posts = db.list_posts(arch_id, since=since, limit=limit)
    questions = [
        q
        for q in db.list_questions(arch_id=arch_id, since_date=days_before(today, days))
        if q.processed and q.responses
    ][:limit]
    events = sorted(
        db.list_get_togethers([arch_id], since=since),
        key=lambda e: e.created_at,
        reverse=True,
    )[:limit]

    user_ids = {p.author_id for p in posts} | {e.creator_id for e in events}
    for q in questions:
        user_ids.update([q.asker_id, q.about_user_id])
    users = db.get_users(user_ids)

    activities = [
        {
            "type": "post",
            "id": p.post_id,
            "content": p.content,
            "author": user_summary(p.author_id, users),
            "createdAt": p.created_at,
            "likesCount": len(p.likes),
            "commentsCount": len(p.comments),
        }
        for p in posts
    ]
    activities.extend(
        {
            "type": "question_responses",
            "id": q.question_id,
            "question": q.question,
            "aboutUser": user_summary(q.about_user_id, users),
            "asker": user_summary(q.asker_id, users),
            "createdAt": q.created_at,
            "responseCount": sum(1 for r in q.responses if not r.passed),
        }
        for q in questions
    )
    activities.extend(
        {
            "type": "event",
            "id": e.get_together_id,
            "title": e.title,
            "creator": user_summary(e.creator_id, users),
            "createdAt": e.created_at,
            "scheduledFor": to_iso(e.scheduled_for),
        }
        for e in events
    )
    activities.sort(key=lambda item: item["createdAt"], reverse=True)
    for item in activities:
        item["createdAt"] = to_iso(item["createdAt"])
    return {"activities": activities[:limit], "period": f"{days} days"}


@router.get("/{arch_id}/stats")
def arch_stats(
    arch_id: str,
    days: int = Query(default=30, ge=1, le=365),
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    arch = load_admin_arch(db, arch_id, user.user_id)
    now = clock()
    since = now - days * SECONDS_PER_DAY
    today = local_date(arch.settings.timezone, now)
    recent_questions = db.list_questions(
        arch_id=arch_id, since_date=days_before(today, days)
    )
    recent_posts = db.list_posts(arch_id, since=since)
    recent_messages = db.list_arch_messages(arch_id, since=since)
    active_ids = [p.author_id for p in recent_posts]
    active_ids += [m.sender_id for m in recent_messages]
    active_ids += [r.user_id for q in recent_questions for r in q.responses]
    active_users = active_user_count(active_ids, arch.member_ids)
    total_members = len(arch.members)
    return {
        "period": f"{days} days",
        "overview": {
            "totalMembers": total_members,
            "activeUsers": active_users,
            "engagementRate": percent(active_users, total_members),
            "totalQuestions": len(db.list_questions(arch_id=arch_id)),
            "totalPosts": db.count_posts(arch_id),
            "totalMessages": len(db.list_arch_messages(arch_id)),
            "totalEvents": db.count_get_togethers(arch_id),
        },
        "recent": {
            "questions": len(recent_questions),
            "posts": len(recent_posts),
            "messages": len(recent_messages),
        },
        "growth": {
            "questionsPerDay": per_day(len(recent_questions), days),
            "postsPerDay": per_day(len(recent_posts), days),
            "messagesPerDay": per_day(len(recent_messages), days),
        },
    }
