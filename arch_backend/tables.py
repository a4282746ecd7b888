"""
SQLAlchemy tables backing the store.

Lists that belong to a single parent (members, responses, likes, comments,
invitees, timeline entries) live in owned child tables. The unique constraints
on those tables carry the one-per-user rules.
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    user_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    push_token = Column(String, nullable=True)
    avatar = Column(String, nullable=True)
    timezone = Column(String, nullable=False, default="America/New_York")
    notification_settings = Column(JSON, nullable=False, default=dict)
    lifecycle = Column(String, nullable=False, default="active", index=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class SessionRow(Base):
    __tablename__ = "sessions"

    token = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.user_id"), nullable=False, index=True)
    expires_at = Column(Float, nullable=False, index=True)


class ArchRow(Base):
    __tablename__ = "arches"

    arch_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    creator_id = Column(String, ForeignKey("users.user_id"), nullable=False)
    invite_code = Column(String, nullable=False, unique=True, index=True)
    question_time = Column(String, nullable=False, default="06:00")
    response_deadline = Column(String, nullable=False, default="17:00")
    timezone = Column(String, nullable=False, default="America/New_York")
    lifecycle = Column(String, nullable=False, default="active", index=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)

    members = relationship(
        "ArchMemberRow",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ArchMemberRow.joined_at",
    )


class ArchMemberRow(Base):
    __tablename__ = "arch_members"
    __table_args__ = (UniqueConstraint("arch_id", "user_id"),)

    id = Column(String, primary_key=True)
    arch_id = Column(String, ForeignKey("arches.arch_id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.user_id"), nullable=False, index=True)
    role = Column(String, nullable=False, default="member")
    joined_at = Column(Float, nullable=False)


class DailyQuestionRow(Base):
    __tablename__ = "daily_questions"

    question_id = Column(String, primary_key=True)
    arch_id = Column(String, ForeignKey("arches.arch_id"), nullable=False, index=True)
    question_date = Column(String, nullable=False, index=True)
    asker_id = Column(String, ForeignKey("users.user_id"), nullable=False, index=True)
    about_user_id = Column(
        String, ForeignKey("users.user_id"), nullable=False, index=True
    )
    question = Column(Text, nullable=False)
    deadline = Column(Float, nullable=False, index=True)
    processed = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(Float, nullable=False)

    responses = relationship(
        "QuestionResponseRow",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="QuestionResponseRow.submitted_at",
    )


class QuestionResponseRow(Base):
    __tablename__ = "question_responses"
    __table_args__ = (UniqueConstraint("question_id", "user_id"),)

    response_id = Column(String, primary_key=True)
    question_id = Column(
        String, ForeignKey("daily_questions.question_id"), nullable=False, index=True
    )
    user_id = Column(String, ForeignKey("users.user_id"), nullable=False, index=True)
    text = Column(Text, nullable=False, default="")
    passed = Column(Boolean, nullable=False, default=False)
    shared_with_arch = Column(Boolean, nullable=False, default=False)
    submitted_at = Column(Float, nullable=False)


class PostRow(Base):
    __tablename__ = "posts"

    post_id = Column(String, primary_key=True)
    arch_id = Column(String, ForeignKey("arches.arch_id"), nullable=False, index=True)
    author_id = Column(String, ForeignKey("users.user_id"), nullable=False)
    content = Column(Text, nullable=False)
    media = Column(JSON, nullable=False, default=list)
    lifecycle = Column(String, nullable=False, default="active", index=True)
    created_at = Column(Float, nullable=False, index=True)
    updated_at = Column(Float, nullable=False)

    likes = relationship(
        "PostLikeRow",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PostLikeRow.liked_at",
    )
    comments = relationship(
        "PostCommentRow",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PostCommentRow.created_at",
    )


class PostLikeRow(Base):
    __tablename__ = "post_likes"
    __table_args__ = (UniqueConstraint("post_id", "user_id"),)

    id = Column(String, primary_key=True)
    post_id = Column(String, ForeignKey("posts.post_id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.user_id"), nullable=False)
    liked_at = Column(Float, nullable=False)


class PostCommentRow(Base):
    __tablename__ = "post_comments"

    comment_id = Column(String, primary_key=True)
    post_id = Column(String, ForeignKey("posts.post_id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.user_id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(Float, nullable=False)


class GetTogetherRow(Base):
    __tablename__ = "get_togethers"

    get_together_id = Column(String, primary_key=True)
    arch_id = Column(String, ForeignKey("arches.arch_id"), nullable=False, index=True)
    creator_id = Column(String, ForeignKey("users.user_id"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    event_type = Column(String, nullable=False)
    scheduled_for = Column(Float, nullable=False, index=True)
    location = Column(String, nullable=True)
    virtual_link = Column(String, nullable=True)
    status = Column(String, nullable=False, default="planning", index=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)

    invitees = relationship(
        "InviteeRow",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InviteeRow.position",
    )
    timeline = relationship(
        "TimelineEntryRow",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TimelineEntryRow.timestamp",
    )


class InviteeRow(Base):
    __tablename__ = "get_together_invitees"
    __table_args__ = (UniqueConstraint("get_together_id", "user_id"),)

    id = Column(String, primary_key=True)
    get_together_id = Column(
        String,
        ForeignKey("get_togethers.get_together_id"),
        nullable=False,
        index=True,
    )
    user_id = Column(String, ForeignKey("users.user_id"), nullable=False, index=True)
    position = Column(Float, nullable=False, default=0)
    status = Column(String, nullable=False, default="pending")
    responded_at = Column(Float, nullable=True)


class TimelineEntryRow(Base):
    __tablename__ = "timeline_entries"

    entry_id = Column(String, primary_key=True)
    get_together_id = Column(
        String,
        ForeignKey("get_togethers.get_together_id"),
        nullable=False,
        index=True,
    )
    user_id = Column(String, ForeignKey("users.user_id"), nullable=False)
    entry_type = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    media = Column(JSON, nullable=False, default=list)
    timestamp = Column(Float, nullable=False)


class MessageRow(Base):
    __tablename__ = "messages"

    message_id = Column(String, primary_key=True)
    arch_id = Column(String, ForeignKey("arches.arch_id"), nullable=False, index=True)
    sender_id = Column(String, ForeignKey("users.user_id"), nullable=False, index=True)
    recipient_id = Column(
        String, ForeignKey("users.user_id"), nullable=False, index=True
    )
    content = Column(Text, nullable=False)
    media = Column(JSON, nullable=False, default=list)
    read_at = Column(Float, nullable=True)
    lifecycle = Column(String, nullable=False, default="active", index=True)
    created_at = Column(Float, nullable=False, index=True)
