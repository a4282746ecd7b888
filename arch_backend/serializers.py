"""
Record -> JSON shaping for API responses.

Serializers take a `users` map (user_id -> UserRecord) so callers can load
every referenced user with one query and render nested user summaries.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Iterable, Optional

from arch_backend.feed import FeedItem, FeedPage, POST_ITEM
from arch_backend.json_utils import convert_keys
from arch_backend.records import (
    ArchRecord,
    DailyQuestionRecord,
    GetTogetherRecord,
    MediaItem,
    MessageRecord,
    PostRecord,
    ResponseRecord,
    TimelineEntryRecord,
    UserRecord,
    media_to_json,
)
from arch_backend.timeutils import to_iso

UserMap = dict[str, UserRecord]


def user_summary(user_id: Optional[str], users: UserMap) -> Optional[dict]:
    if user_id is None:
        return None
    user = users.get(user_id)
    if user is None:
        return {"id": user_id, "name": None, "email": None, "avatar": None}
    return {
        "id": user.user_id,
        "name": user.name,
        "email": user.email,
        "avatar": user.avatar,
    }


def user_profile(user: UserRecord) -> dict:
    return {
        "id": user.user_id,
        "name": user.name,
        "email": user.email,
        "avatar": user.avatar,
        "timezone": user.timezone,
        "hasPushToken": bool(user.push_token),
        "notificationSettings": convert_keys(
            asdict(user.notification_settings), "snake_to_camel"
        ),
        "isActive": user.is_active,
        "createdAt": to_iso(user.created_at),
    }


def _media(items: list[MediaItem]) -> list[dict]:
    return convert_keys(media_to_json(items), "snake_to_camel")


def arch_json(arch: ArchRecord, users: UserMap) -> dict:
    return {
        "id": arch.arch_id,
        "name": arch.name,
        "description": arch.description,
        "creator": user_summary(arch.creator_id, users),
        "inviteCode": arch.invite_code,
        "settings": convert_keys(asdict(arch.settings), "snake_to_camel"),
        "members": [
            {
                "user": user_summary(member.user_id, users),
                "role": member.role.value,
                "joinedAt": to_iso(member.joined_at),
            }
            for member in arch.members
        ],
        "memberCount": len(arch.members),
        "isActive": arch.is_active,
        "createdAt": to_iso(arch.created_at),
    }


def response_json(response: ResponseRecord, users: UserMap) -> dict:
    return {
        "id": response.response_id,
        "questionId": response.question_id,
        "user": user_summary(response.user_id, users),
        "response": response.text,
        "passed": response.passed,
        "sharedWithArch": response.shared_with_arch,
        "submittedAt": to_iso(response.submitted_at),
    }


def question_json(
    question: DailyQuestionRecord,
    users: UserMap,
    *,
    include_responses: bool = True,
    extra: Optional[dict] = None,
) -> dict:
    payload = {
        "id": question.question_id,
        "archId": question.arch_id,
        "date": question.question_date,
        "asker": user_summary(question.asker_id, users),
        "aboutUser": user_summary(question.about_user_id, users),
        "question": question.question,
        "deadline": to_iso(question.deadline),
        "processed": question.processed,
        "createdAt": to_iso(question.created_at),
    }
    if include_responses:
        payload["responses"] = [response_json(r, users) for r in question.responses]
    if extra:
        payload.update(extra)
    return payload


def comment_json(comment, users: UserMap) -> dict:
    return {
        "id": comment.comment_id,
        "user": user_summary(comment.user_id, users),
        "content": comment.content,
        "createdAt": to_iso(comment.created_at),
    }


def post_json(post: PostRecord, users: UserMap, viewer_id: Optional[str] = None) -> dict:
    payload = {
        "id": post.post_id,
        "type": POST_ITEM,
        "archId": post.arch_id,
        "author": user_summary(post.author_id, users),
        "content": post.content,
        "media": _media(post.media),
        "likes": [
            {"user": user_summary(like.user_id, users), "likedAt": to_iso(like.liked_at)}
            for like in post.likes
        ],
        "comments": [comment_json(c, users) for c in post.comments],
        "likeCount": len(post.likes),
        "commentCount": len(post.comments),
        "createdAt": to_iso(post.created_at),
        "updatedAt": to_iso(post.updated_at),
    }
    if viewer_id is not None:
        payload["userHasLiked"] = any(like.user_id == viewer_id for like in post.likes)
    return payload


def feed_item_json(item: FeedItem, users: UserMap, viewer_id: str) -> dict:
    if item.kind == POST_ITEM:
        payload = post_json(item.post, users, viewer_id)
        payload["userHasLiked"] = item.user_has_liked
        payload["engagementScore"] = item.engagement_score
        return payload
    return {
        "id": item.item_id,
        "type": item.kind,
        "archId": item.question.arch_id,
        "questionId": item.question.question_id,
        "responseId": item.response.response_id,
        "question": item.question.question,
        "response": item.response.text,
        "asker": user_summary(item.question.asker_id, users),
        "aboutUser": user_summary(item.question.about_user_id, users),
        "author": user_summary(item.response.user_id, users),
        "createdAt": to_iso(item.created_at),
        "likes": [],
        "comments": [],
    }


def feed_user_ids(page: FeedPage) -> set[str]:
    ids: set[str] = set()
    for item in page.items:
        if item.post is not None:
            ids.update(post_user_ids(item.post))
        else:
            ids.update(
                [
                    item.question.asker_id,
                    item.question.about_user_id,
                    item.response.user_id,
                ]
            )
    return ids


def feed_json(page: FeedPage, users: UserMap, viewer_id: str) -> dict:
    return {
        "feedItems": [feed_item_json(item, users, viewer_id) for item in page.items],
        "hasMore": page.has_more,
        "currentPage": page.current_page,
    }


def post_user_ids(post: PostRecord) -> set[str]:
    ids = {post.author_id}
    ids.update(like.user_id for like in post.likes)
    ids.update(comment.user_id for comment in post.comments)
    return ids


def question_user_ids(questions: Iterable[DailyQuestionRecord]) -> set[str]:
    ids: set[str] = set()
    for question in questions:
        ids.update([question.asker_id, question.about_user_id])
        ids.update(response.user_id for response in question.responses)
    return ids


def get_together_user_ids(get_together: GetTogetherRecord) -> set[str]:
    ids = {get_together.creator_id}
    ids.update(invitee.user_id for invitee in get_together.invitees)
    ids.update(entry.user_id for entry in get_together.timeline)
    return ids


def timeline_entry_json(entry: TimelineEntryRecord, users: UserMap) -> dict:
    return {
        "id": entry.entry_id,
        "user": user_summary(entry.user_id, users),
        "type": entry.entry_type.value,
        "content": entry.content,
        "media": _media(entry.media),
        "timestamp": to_iso(entry.timestamp),
    }


def get_together_json(get_together: GetTogetherRecord, users: UserMap) -> dict:
    return {
        "id": get_together.get_together_id,
        "archId": get_together.arch_id,
        "creator": user_summary(get_together.creator_id, users),
        "title": get_together.title,
        "description": get_together.description,
        "type": get_together.event_type.value,
        "scheduledFor": to_iso(get_together.scheduled_for),
        "location": get_together.location,
        "virtualLink": get_together.virtual_link,
        "invitees": [
            {
                "user": user_summary(invitee.user_id, users),
                "status": invitee.status.value,
                "respondedAt": to_iso(invitee.responded_at),
            }
            for invitee in get_together.invitees
        ],
        "timeline": [timeline_entry_json(entry, users) for entry in get_together.timeline],
        "status": get_together.status.value,
        "createdAt": to_iso(get_together.created_at),
        "updatedAt": to_iso(get_together.updated_at),
    }


def message_json(message: MessageRecord, users: UserMap) -> dict:
    return {
        "id": message.message_id,
        "archId": message.arch_id,
        "sender": user_summary(message.sender_id, users),
        "recipient": user_summary(message.recipient_id, users),
        "content": message.content,
        "media": _media(message.media),
        "isRead": message.read_at is not None,
        "readAt": to_iso(message.read_at),
        "createdAt": to_iso(message.created_at),
    }
