"""
Pydantic request schemas. Bodies are camelCase on the wire and reject unknown fields.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from arch_backend.records import (
    ArchSettings,
    EventStatus,
    EventType,
    MediaItem,
    MediaKind,
    MemberRole,
    RsvpStatus,
    TimelineEntryType,
)
from arch_backend.timeutils import is_valid_timezone, parse_hhmm


class RequestModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid", populate_by_name=True, alias_generator=to_camel
    )


def _non_blank(value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError("must not be empty")
    return value


def _check_timezone(value: Optional[str]) -> Optional[str]:
    if value is not None and not is_valid_timezone(value):
        raise ValueError(f"Unknown timezone: {value}")
    return value


NonBlankStr = Annotated[str, AfterValidator(_non_blank)]
TimezoneName = Annotated[str, AfterValidator(_check_timezone)]


class MediaPayload(RequestModel):
    url: str = Field(..., min_length=1)
    kind: MediaKind = MediaKind.IMAGE
    thumbnail: Optional[str] = None
    filename: Optional[str] = None

    def to_record(self) -> MediaItem:
        return MediaItem(
            url=self.url, kind=self.kind, thumbnail=self.thumbnail, filename=self.filename
        )


# --- auth / users -----------------------------------------------------------


class RegisterRequest(RequestModel):
    name: NonBlankStr = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=6)
    timezone: Optional[TimezoneName] = None

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        value = value.strip().lower()
        if "@" not in value:
            raise ValueError("Invalid email address")
        return value


class LoginRequest(RequestModel):
    email: str
    password: str


class PushTokenRequest(RequestModel):
    token: str = Field(..., min_length=1)


class ProfileUpdateRequest(RequestModel):
    name: Optional[str] = Field(default=None, max_length=100)
    avatar: Optional[str] = None
    timezone: Optional[TimezoneName] = None


class NotificationSettingsUpdate(RequestModel):
    daily_questions: Optional[bool] = None
    responses: Optional[bool] = None
    posts: Optional[bool] = None
    get_togethers: Optional[bool] = None
    messages: Optional[bool] = None


class PasswordChangeRequest(RequestModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class DeleteAccountRequest(RequestModel):
    password: str


# --- arches -----------------------------------------------------------------


class ArchSettingsPayload(RequestModel):
    question_time: Optional[str] = None
    response_deadline: Optional[str] = None
    timezone: Optional[TimezoneName] = None

    @field_validator("question_time", "response_deadline")
    @classmethod
    def _hhmm(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            parse_hhmm(value)
        return value

    def merged_with(self, current: ArchSettings) -> ArchSettings:
        return ArchSettings(
            question_time=self.question_time or current.question_time,
            response_deadline=self.response_deadline or current.response_deadline,
            timezone=self.timezone or current.timezone,
        )


class CreateArchRequest(RequestModel):
    name: NonBlankStr = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    settings: Optional[ArchSettingsPayload] = None


class UpdateArchRequest(RequestModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    settings: Optional[ArchSettingsPayload] = None


class JoinArchRequest(RequestModel):
    invite_code: str = Field(..., min_length=1)


class RoleUpdateRequest(RequestModel):
    role: MemberRole


# --- questions / responses --------------------------------------------------


class RespondRequest(RequestModel):
    response: str = ""
    shared_with_arch: Optional[bool] = None


class SubmitResponseRequest(RequestModel):
    response: str = ""
    passed: bool = False
    shared_with_arch: Optional[bool] = None


# --- posts ------------------------------------------------------------------


class CreatePostRequest(RequestModel):
    arch_id: str
    content: NonBlankStr = Field(..., max_length=5000)
    media: list[MediaPayload] = Field(default_factory=list)


class CommentRequest(RequestModel):
    content: NonBlankStr = Field(..., max_length=2000)


# --- get-togethers ----------------------------------------------------------


class CreateGetTogetherRequest(RequestModel):
    arch_id: str
    title: NonBlankStr = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    event_type: EventType = Field(..., alias="type")
    scheduled_for: datetime
    location: Optional[str] = None
    virtual_link: Optional[str] = None
    invite_all_members: bool = True
    specific_invitees: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _venue(self):
        if self.event_type == EventType.IN_PERSON and not (self.location or "").strip():
            raise ValueError("Location is required for in-person events")
        if self.event_type == EventType.VIRTUAL and not (self.virtual_link or "").strip():
            raise ValueError("Virtual link is required for virtual events")
        return self


class UpdateGetTogetherRequest(RequestModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    event_type: Optional[EventType] = Field(default=None, alias="type")
    scheduled_for: Optional[datetime] = None
    location: Optional[str] = None
    virtual_link: Optional[str] = None
    status: Optional[EventStatus] = None


class RsvpRequest(RequestModel):
    status: RsvpStatus


class TimelineEntryRequest(RequestModel):
    entry_type: TimelineEntryType = Field(default=TimelineEntryType.NOTE, alias="type")
    content: NonBlankStr = Field(..., max_length=2000)
    media: list[MediaPayload] = Field(default_factory=list)


# --- messages / media -------------------------------------------------------


class SendMessageRequest(RequestModel):
    arch_id: str
    recipient_id: str
    content: NonBlankStr = Field(..., max_length=5000)
    media: list[MediaPayload] = Field(default_factory=list)


class UploadUrlRequest(RequestModel):
    arch_id: str
    filename: str = Field(..., min_length=1, max_length=255)
    content_type: Optional[str] = None


class UploadUrlResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    upload_url: str
    path: str
    download_url: str


class SignUrlResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    url: str
    path: str
