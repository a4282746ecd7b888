"""
Plain records returned by the store, plus the enums shared across the API.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from dacite import Config, from_dict


class Lifecycle(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class MemberRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


class RsvpStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class EventType(str, Enum):
    IN_PERSON = "in-person"
    VIRTUAL = "virtual"


class EventStatus(str, Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"


class TimelineEntryType(str, Enum):
    NOTE = "note"
    PHOTO = "photo"
    VIDEO = "video"


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    FILE = "file"


class QuestionStatus(str, Enum):
    """Status of a daily question from the asker's point of view."""

    ANSWERED = "answered"
    EXPIRED = "expired"
    PENDING = "pending"


@dataclass
class MediaItem:
    url: str
    kind: MediaKind = MediaKind.IMAGE
    thumbnail: Optional[str] = None
    filename: Optional[str] = None


_DACITE_CONFIG = Config(cast=[MediaKind])


def media_from_json(items: Optional[list]) -> list[MediaItem]:
    """Decode a stored JSON media list into MediaItem records."""
    return [from_dict(MediaItem, item, config=_DACITE_CONFIG) for item in items or []]


def media_to_json(items: list[MediaItem]) -> list[dict]:
    return [
        {
            "url": item.url,
            "kind": item.kind.value,
            "thumbnail": item.thumbnail,
            "filename": item.filename,
        }
        for item in items
    ]


@dataclass
class NotificationSettings:
    daily_questions: bool = True
    responses: bool = True
    posts: bool = True
    get_togethers: bool = True
    messages: bool = True

    @classmethod
    def from_json(cls, payload: Optional[dict]) -> "NotificationSettings":
        return from_dict(cls, {**cls().__dict__, **(payload or {})})


@dataclass
class UserRecord:
    user_id: str
    name: str
    email: str
    password_hash: str
    push_token: Optional[str] = None
    avatar: Optional[str] = None
    timezone: str = "America/New_York"
    notification_settings: NotificationSettings = field(
        default_factory=NotificationSettings
    )
    lifecycle: Lifecycle = Lifecycle.ACTIVE
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    @property
    def is_active(self) -> bool:
        return self.lifecycle == Lifecycle.ACTIVE


@dataclass
class SessionRecord:
    token: str
    user_id: str
    expires_at: float


@dataclass
class ArchSettings:
    question_time: str = "06:00"
    response_deadline: str = "17:00"
    timezone: str = "America/New_York"


@dataclass
class MemberRecord:
    user_id: str
    role: MemberRole = MemberRole.MEMBER
    joined_at: float = field(default_factory=lambda: time.time())


@dataclass
class ArchRecord:
    arch_id: str
    name: str
    creator_id: str
    invite_code: str
    description: str = ""
    settings: ArchSettings = field(default_factory=ArchSettings)
    members: list[MemberRecord] = field(default_factory=list)
    lifecycle: Lifecycle = Lifecycle.ACTIVE
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    @property
    def is_active(self) -> bool:
        return self.lifecycle == Lifecycle.ACTIVE

    @property
    def member_ids(self) -> list[str]:
        return [member.user_id for member in self.members]


@dataclass
class ResponseRecord:
    response_id: str
    question_id: str
    user_id: str
    text: str = ""
    passed: bool = False
    shared_with_arch: bool = False
    submitted_at: float = field(default_factory=lambda: time.time())

    @property
    def has_content(self) -> bool:
        return not self.passed and bool(self.text and self.text.strip())


@dataclass
class DailyQuestionRecord:
    question_id: str
    arch_id: str
    question_date: str
    asker_id: str
    about_user_id: str
    question: str
    deadline: float
    processed: bool = False
    responses: list[ResponseRecord] = field(default_factory=list)
    created_at: float = field(default_factory=lambda: time.time())

    def response_for(self, user_id: str) -> Optional[ResponseRecord]:
        for response in self.responses:
            if response.user_id == user_id:
                return response
        return None


@dataclass
class LikeRecord:
    user_id: str
    liked_at: float


@dataclass
class CommentRecord:
    comment_id: str
    user_id: str
    content: str
    created_at: float


@dataclass
class PostRecord:
    post_id: str
    arch_id: str
    author_id: str
    content: str
    media: list[MediaItem] = field(default_factory=list)
    likes: list[LikeRecord] = field(default_factory=list)
    comments: list[CommentRecord] = field(default_factory=list)
    lifecycle: Lifecycle = Lifecycle.ACTIVE
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())


@dataclass
class InviteeRecord:
    user_id: str
    status: RsvpStatus = RsvpStatus.PENDING
    responded_at: Optional[float] = None


@dataclass
class TimelineEntryRecord:
    entry_id: str
    user_id: str
    entry_type: TimelineEntryType
    content: str
    media: list[MediaItem] = field(default_factory=list)
    timestamp: float = field(default_factory=lambda: time.time())


@dataclass
class GetTogetherRecord:
    get_together_id: str
    arch_id: str
    creator_id: str
    title: str
    event_type: EventType
    scheduled_for: float
    description: Optional[str] = None
    location: Optional[str] = None
    virtual_link: Optional[str] = None
    invitees: list[InviteeRecord] = field(default_factory=list)
    timeline: list[TimelineEntryRecord] = field(default_factory=list)
    status: EventStatus = EventStatus.PLANNING
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def invitee(self, user_id: str) -> Optional[InviteeRecord]:
        for invitee in self.invitees:
            if invitee.user_id == user_id:
                return invitee
        return None


@dataclass
class MessageRecord:
    message_id: str
    arch_id: str
    sender_id: str
    recipient_id: str
    content: str
    media: list[MediaItem] = field(default_factory=list)
    read_at: Optional[float] = None
    lifecycle: Lifecycle = Lifecycle.ACTIVE
    created_at: float = field(default_factory=lambda: time.time())
