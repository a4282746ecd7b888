"""
Arch feed and post endpoints.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from arch_backend.db import PostgresDbClient
from arch_backend.dependencies import (
    Clock,
    get_clock,
    get_current_user,
    get_db_client,
    get_event_bus,
    get_lifecycle,
    get_notifier,
)
from arch_backend.errors import Forbidden, NotFound
from arch_backend.feed import build_feed
from arch_backend.lifecycle import DailyQuestionLifecycle
from arch_backend.membership import is_admin, load_member_arch
from arch_backend.notifications import NotificationDispatcher
from arch_backend.realtime import EventBus, broadcast
from arch_backend.records import Lifecycle, PostRecord, UserRecord
from arch_backend.schemas import CommentRequest, CreatePostRequest
from arch_backend.serializers import (
    comment_json,
    feed_json,
    feed_user_ids,
    post_json,
    post_user_ids,
    question_json,
    question_user_ids,
    response_json,
)

logger = logging.getLogger(__name__)

router = APIRouter()

PREVIEW_LENGTH = 50


def _preview(text: str) -> str:
    if len(text) <= PREVIEW_LENGTH:
        return text
    return text[:PREVIEW_LENGTH] + "..."


def _load_member_post(db: PostgresDbClient, post_id: str, user_id: str) -> PostRecord:
    post = db.get_post(post_id)
    if post is None:
        raise NotFound("Post not found")
    load_member_arch(db, post.arch_id, user_id)
    return post


def _render(db: PostgresDbClient, post: PostRecord, viewer_id: str) -> dict:
    return post_json(post, db.get_users(post_user_ids(post)), viewer_id)


@router.get("/feed/{arch_id}")
def arch_feed(
    arch_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=50),
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    arch = load_member_arch(db, arch_id, user.user_id)
    feed = build_feed(db, arch, user.user_id, page, limit, clock())
    return feed_json(feed, db.get_users(feed_user_ids(feed)), user.user_id)


@router.post("", status_code=201)
def create_post(
    payload: CreatePostRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    notifier: NotificationDispatcher = Depends(get_notifier),
    events: EventBus = Depends(get_event_bus),
    clock: Clock = Depends(get_clock),
):
    load_member_arch(db, payload.arch_id, user.user_id)
    post = db.create_post(
        payload.arch_id,
        user.user_id,
        payload.content.strip(),
        [item.to_record() for item in payload.media],
        now=clock(),
    )
    logger.info("User %s posted %s in arch %s", user.user_id, post.post_id, post.arch_id)

    notifier.send_to_arch(
        post.arch_id,
        "📱 New family post",
        f"{user.name} shared something new",
        exclude_user_id=user.user_id,
        data={"type": "posts", "archId": post.arch_id, "postId": post.post_id},
    )
    rendered = _render(db, post, user.user_id)
    broadcast(events, post.arch_id, "new-post", rendered)
    return rendered


@router.get("/{post_id}")
def get_post(
    post_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    return _render(db, _load_member_post(db, post_id, user.user_id), user.user_id)


@router.post("/{post_id}/like")
def toggle_like(
    post_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    events: EventBus = Depends(get_event_bus),
    clock: Clock = Depends(get_clock),
):
    post = _load_member_post(db, post_id, user.user_id)
    liked = db.toggle_like(post_id, user.user_id, now=clock())
    like_count = len(db.get_post(post_id).likes)
    broadcast(
        events,
        post.arch_id,
        "post-liked",
        {
            "postId": post_id,
            "userId": user.user_id,
            "liked": liked,
            "likeCount": like_count,
        },
    )
    return {
        "message": "Post liked" if liked else "Post unliked",
        "liked": liked,
        "likeCount": like_count,
    }


@router.post("/{post_id}/comment", status_code=201)
def add_comment(
    post_id: str,
    payload: CommentRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    notifier: NotificationDispatcher = Depends(get_notifier),
    events: EventBus = Depends(get_event_bus),
    clock: Clock = Depends(get_clock),
):
    post = _load_member_post(db, post_id, user.user_id)
    content = payload.content.strip()
    comment = db.add_comment(post_id, user.user_id, content, now=clock())
    rendered = comment_json(comment, {user.user_id: user})

    if post.author_id != user.user_id:
        notifier.send_to_user(
            post.author_id,
            "💬 New comment",
            f"{user.name}: {_preview(content)}",
            {"type": "comment", "archId": post.arch_id, "postId": post_id},
        )
    broadcast(
        events, post.arch_id, "new-comment", {"postId": post_id, "comment": rendered}
    )
    return {"message": "Comment added", "comment": rendered}


@router.delete("/{post_id}")
def delete_post(
    post_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    post = db.get_post(post_id)
    if post is None:
        raise NotFound("Post not found")
    arch = load_member_arch(db, post.arch_id, user.user_id)
    if post.author_id != user.user_id and not is_admin(arch, user.user_id):
        raise Forbidden("Not authorized to delete this post")
    db.set_post_lifecycle(post_id, Lifecycle.DELETED, now=clock())
    logger.info("Post %s deleted by %s", post_id, user.user_id)
    return {"message": "Post deleted successfully"}


@router.post("/share-response/{response_id}")
def share_response_to_feed(
    response_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    lifecycle: DailyQuestionLifecycle = Depends(get_lifecycle),
):
    question, response = lifecycle.share_response(response_id, user.user_id)
    users = db.get_users(question_user_ids([question]))
    return {
        "message": "Response shared to family feed",
        "response": response_json(response, users),
        "question": question_json(question, users, include_responses=False),
    }
