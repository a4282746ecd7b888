"""
Direct message endpoints between members of the same arch.
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
from arch_backend.membership import is_member, load_admin_arch, load_member_arch
from arch_backend.notifications import NotificationDispatcher
from arch_backend.realtime import EventBus, broadcast
from arch_backend.records import Lifecycle, MessageRecord, UserRecord
from arch_backend.routes.common import SECONDS_PER_DAY
from arch_backend.schemas import SendMessageRequest
from arch_backend.serializers import message_json, user_summary
from arch_backend.stats import conversation_summaries, message_stats

logger = logging.getLogger(__name__)

router = APIRouter()

PREVIEW_LENGTH = 100


def _render_many(db: PostgresDbClient, messages: list[MessageRecord]) -> list[dict]:
    users = db.get_users(
        uid for m in messages for uid in (m.sender_id, m.recipient_id)
    )
    return [message_json(m, users) for m in messages]


def _load_own_message(db: PostgresDbClient, message_id: str) -> MessageRecord:
    message = db.get_message(message_id)
    if message is None:
        raise NotFound("Message not found")
    return message


@router.get("/conversation/{arch_id}/{other_user_id}")
def conversation(
    arch_id: str,
    other_user_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    load_member_arch(db, arch_id, user.user_id)
    newest_first = db.list_conversation(
        arch_id, user.user_id, other_user_id, offset=(page - 1) * limit, limit=limit
    )
    db.mark_conversation_read(arch_id, user.user_id, other_user_id, now=clock())
    messages = list(reversed(newest_first))
    return {
        "messages": _render_many(db, messages),
        "hasMore": len(newest_first) == limit,
        "currentPage": page,
    }


@router.get("/conversations/{arch_id}")
def conversations(
    arch_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    load_member_arch(db, arch_id, user.user_id)
    summaries = conversation_summaries(
        db.list_user_messages(arch_id, user.user_id), user.user_id
    )
    users = db.get_users(
        [s["userId"] for s in summaries]
        + [s["lastMessage"].sender_id for s in summaries]
        + [user.user_id]
    )
    return [
        {
            "otherUser": user_summary(s["userId"], users),
            "lastMessage": message_json(s["lastMessage"], users),
            "unreadCount": s["unreadCount"],
            "messageCount": s["messageCount"],
        }
        for s in summaries
    ]


@router.post("", status_code=201)
def send_message(
    payload: SendMessageRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    notifier: NotificationDispatcher = Depends(get_notifier),
    events: EventBus = Depends(get_event_bus),
    clock: Clock = Depends(get_clock),
):
    if payload.recipient_id == user.user_id:
        raise HTTPException(status_code=400, detail="Cannot send a message to yourself")
    arch = db.get_arch(payload.arch_id)
    if arch is None:
        raise NotFound("Arch not found")
    if not is_member(arch, user.user_id) or not is_member(arch, payload.recipient_id):
        raise Forbidden("Both users must be members of this arch")

    content = payload.content.strip()
    message = db.create_message(
        arch.arch_id,
        user.user_id,
        payload.recipient_id,
        content,
        [item.to_record() for item in payload.media],
        now=clock(),
    )
    rendered = _render_many(db, [message])[0]

    preview = content if len(content) <= PREVIEW_LENGTH else content[:PREVIEW_LENGTH] + "..."
    notifier.send_to_user(
        payload.recipient_id,
        f"💬 {user.name}",
        preview,
        {
            "type": "message",
            "archId": arch.arch_id,
            "messageId": message.message_id,
            "senderId": user.user_id,
        },
    )
    broadcast(events, arch.arch_id, "new-message", rendered)
    return rendered


@router.put("/{message_id}/read")
def mark_read(
    message_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    message = _load_own_message(db, message_id)
    if message.recipient_id != user.user_id:
        raise Forbidden("Not authorized to mark this message as read")
    db.mark_message_read(message_id, now=clock())
    return {"message": "Message marked as read"}


@router.put("/read-all/{arch_id}/{sender_id}")
def mark_all_read(
    arch_id: str,
    sender_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    load_member_arch(db, arch_id, user.user_id)
    updated = db.mark_conversation_read(arch_id, user.user_id, sender_id, now=clock())
    return {"message": "Messages marked as read", "updated": updated}


@router.delete("/{message_id}")
def delete_message(
    message_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    message = _load_own_message(db, message_id)
    if message.sender_id != user.user_id:
        raise Forbidden("Not authorized to delete this message")
    db.set_message_lifecycle(message_id, Lifecycle.DELETED)
    logger.info("Message %s deleted by %s", message_id, user.user_id)
    return {"message": "Message deleted successfully"}


@router.get("/stats/{arch_id}")
def arch_message_stats(
    arch_id: str,
    days: int = Query(default=30, ge=1, le=365),
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    load_admin_arch(db, arch_id, user.user_id)
    messages = db.list_arch_messages(arch_id, since=clock() - days * SECONDS_PER_DAY)
    return {**message_stats(messages), "period": f"{days} days"}


@router.get("/search/{arch_id}/{other_user_id}")
def search_conversation(
    arch_id: str,
    other_user_id: str,
    query: str = Query(default=""),
    limit: int = Query(default=20, ge=1, le=100),
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    if len(query.strip()) < 2:
        raise HTTPException(
            status_code=400, detail="Search query must be at least 2 characters"
        )
    load_member_arch(db, arch_id, user.user_id)
    messages = db.list_conversation(
        arch_id, user.user_id, other_user_id, limit=limit, query=query.strip()
    )
    return {"messages": _render_many(db, messages), "query": query.strip()}
