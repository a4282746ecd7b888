"""
SQLAlchemy-backed store for users, arches, questions, posts, events and messages.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Iterable, Optional

from sqlalchemy import and_, create_engine, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from arch_backend.records import (
    ArchRecord,
    ArchSettings,
    CommentRecord,
    DailyQuestionRecord,
    EventStatus,
    EventType,
    GetTogetherRecord,
    InviteeRecord,
    Lifecycle,
    LikeRecord,
    MediaItem,
    MemberRecord,
    MemberRole,
    MessageRecord,
    NotificationSettings,
    PostRecord,
    ResponseRecord,
    RsvpStatus,
    SessionRecord,
    TimelineEntryRecord,
    TimelineEntryType,
    UserRecord,
    media_from_json,
    media_to_json,
)
from arch_backend.tables import (
    ArchMemberRow,
    ArchRow,
    Base,
    DailyQuestionRow,
    GetTogetherRow,
    InviteeRow,
    MessageRow,
    PostCommentRow,
    PostLikeRow,
    PostRow,
    QuestionResponseRow,
    SessionRow,
    TimelineEntryRow,
    UserRow,
)

logger = logging.getLogger(__name__)

IN_MEMORY_DATABASE_URL = "sqlite+pysqlite:///:memory:"

_USER_FIELDS = {"name", "email", "password_hash", "push_token", "avatar", "timezone"}
_GET_TOGETHER_FIELDS = {
    "title",
    "description",
    "scheduled_for",
    "location",
    "virtual_link",
}


def _new_id() -> str:
    return uuid.uuid4().hex


def _now(now: Optional[float]) -> float:
    return time.time() if now is None else now


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (Postgres in
    production, SQLite for tests and local runs).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # One shared connection so every thread sees the same database.
            self.engine = create_engine(
                database_url,
                future=True,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(
                database_url,
                future=True,
                pool_pre_ping=True,
                pool_recycle=1800,
            )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @classmethod
    def in_memory(cls) -> "PostgresDbClient":
        return cls(IN_MEMORY_DATABASE_URL)

    # ------------------------------------------------------------------
    # Row conversion

    def _to_user_record(self, row: UserRow) -> UserRecord:
        return UserRecord(
            user_id=row.user_id,
            name=row.name,
            email=row.email,
            password_hash=row.password_hash,
            push_token=row.push_token,
            avatar=row.avatar,
            timezone=row.timezone,
            notification_settings=NotificationSettings.from_json(
                row.notification_settings
            ),
            lifecycle=Lifecycle(row.lifecycle),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_arch_record(self, row: ArchRow) -> ArchRecord:
        return ArchRecord(
            arch_id=row.arch_id,
            name=row.name,
            description=row.description or "",
            creator_id=row.creator_id,
            invite_code=row.invite_code,
            settings=ArchSettings(
                question_time=row.question_time,
                response_deadline=row.response_deadline,
                timezone=row.timezone,
            ),
            members=[
                MemberRecord(
                    user_id=member.user_id,
                    role=MemberRole(member.role),
                    joined_at=member.joined_at,
                )
                for member in row.members
            ],
            lifecycle=Lifecycle(row.lifecycle),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_response_record(self, row: QuestionResponseRow) -> ResponseRecord:
        return ResponseRecord(
            response_id=row.response_id,
            question_id=row.question_id,
            user_id=row.user_id,
            text=row.text or "",
            passed=bool(row.passed),
            shared_with_arch=bool(row.shared_with_arch),
            submitted_at=row.submitted_at,
        )

    def _to_question_record(self, row: DailyQuestionRow) -> DailyQuestionRecord:
        return DailyQuestionRecord(
            question_id=row.question_id,
            arch_id=row.arch_id,
            question_date=row.question_date,
            asker_id=row.asker_id,
            about_user_id=row.about_user_id,
            question=row.question,
            deadline=row.deadline,
            processed=bool(row.processed),
            responses=[self._to_response_record(r) for r in row.responses],
            created_at=row.created_at,
        )

    def _to_post_record(self, row: PostRow) -> PostRecord:
        return PostRecord(
            post_id=row.post_id,
            arch_id=row.arch_id,
            author_id=row.author_id,
            content=row.content,
            media=media_from_json(row.media),
            likes=[LikeRecord(user_id=l.user_id, liked_at=l.liked_at) for l in row.likes],
            comments=[
                CommentRecord(
                    comment_id=c.comment_id,
                    user_id=c.user_id,
                    content=c.content,
                    created_at=c.created_at,
                )
                for c in row.comments
            ],
            lifecycle=Lifecycle(row.lifecycle),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_timeline_record(self, row: TimelineEntryRow) -> TimelineEntryRecord:
        return TimelineEntryRecord(
            entry_id=row.entry_id,
            user_id=row.user_id,
            entry_type=TimelineEntryType(row.entry_type),
            content=row.content,
            media=media_from_json(row.media),
            timestamp=row.timestamp,
        )

    def _to_get_together_record(self, row: GetTogetherRow) -> GetTogetherRecord:
        return GetTogetherRecord(
            get_together_id=row.get_together_id,
            arch_id=row.arch_id,
            creator_id=row.creator_id,
            title=row.title,
            description=row.description,
            event_type=EventType(row.event_type),
            scheduled_for=row.scheduled_for,
            location=row.location,
            virtual_link=row.virtual_link,
            invitees=[
                InviteeRecord(
                    user_id=i.user_id,
                    status=RsvpStatus(i.status),
                    responded_at=i.responded_at,
                )
                for i in row.invitees
            ],
            timeline=[self._to_timeline_record(t) for t in row.timeline],
            status=EventStatus(row.status),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_message_record(self, row: MessageRow) -> MessageRecord:
        return MessageRecord(
            message_id=row.message_id,
            arch_id=row.arch_id,
            sender_id=row.sender_id,
            recipient_id=row.recipient_id,
            content=row.content,
            media=media_from_json(row.media),
            read_at=row.read_at,
            lifecycle=Lifecycle(row.lifecycle),
            created_at=row.created_at,
        )

    # ------------------------------------------------------------------
    # Users and sessions

    def create_user(
        self,
        name: str,
        email: str,
        password_hash: str,
        *,
        timezone: str = "America/New_York",
        now: Optional[float] = None,
    ) -> UserRecord:
        now = _now(now)
        with self.Session() as session:
            row = UserRow(
                user_id=_new_id(),
                name=name,
                email=email.strip().lower(),
                password_hash=password_hash,
                timezone=timezone,
                notification_settings=NotificationSettings().__dict__,
                lifecycle=Lifecycle.ACTIVE.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            return self._to_user_record(row)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user_record(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self.Session() as session:
            stmt = select(UserRow).where(UserRow.email == email.strip().lower())
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_user_record(row) if row else None

    def get_users(self, user_ids: Iterable[str]) -> dict[str, UserRecord]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        with self.Session() as session:
            rows = session.execute(
                select(UserRow).where(UserRow.user_id.in_(ids))
            ).scalars()
            return {row.user_id: self._to_user_record(row) for row in rows}

    def update_user(
        self,
        user_id: str,
        *,
        notification_settings: Optional[NotificationSettings] = None,
        lifecycle: Optional[Lifecycle] = None,
        now: Optional[float] = None,
        **fields,
    ) -> Optional[UserRecord]:
        unknown = set(fields) - _USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)}")
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                return None
            for key, value in fields.items():
                setattr(row, key, value)
            if notification_settings is not None:
                row.notification_settings = dict(notification_settings.__dict__)
            if lifecycle is not None:
                row.lifecycle = lifecycle.value
            row.updated_at = _now(now)
            session.commit()
            return self._to_user_record(row)

    def clear_push_token(self, user_id: str, token: str) -> bool:
        """Clear the stored token only if it is still the one given."""
        with self.Session() as session:
            result = session.execute(
                update(UserRow)
                .where(UserRow.user_id == user_id, UserRow.push_token == token)
                .values(push_token=None)
            )
            session.commit()
            return (result.rowcount or 0) > 0

    def search_users(
        self,
        query: str,
        *,
        user_ids: Optional[Iterable[str]] = None,
        exclude_user_id: Optional[str] = None,
        limit: int = 10,
    ) -> list[UserRecord]:
        pattern = f"%{query.strip().lower()}%"
        with self.Session() as session:
            stmt = select(UserRow).where(
                UserRow.lifecycle == Lifecycle.ACTIVE.value,
                or_(
                    func.lower(UserRow.name).like(pattern),
                    func.lower(UserRow.email).like(pattern),
                ),
            )
            if user_ids is not None:
                stmt = stmt.where(UserRow.user_id.in_(list(user_ids)))
            if exclude_user_id:
                stmt = stmt.where(UserRow.user_id != exclude_user_id)
            stmt = stmt.order_by(UserRow.name.asc()).limit(limit)
            return [self._to_user_record(row) for row in session.execute(stmt).scalars()]

    def create_session(
        self, user_id: str, token: str, expires_at: float
    ) -> SessionRecord:
        with self.Session() as session:
            session.add(SessionRow(token=token, user_id=user_id, expires_at=expires_at))
            session.commit()
        return SessionRecord(token=token, user_id=user_id, expires_at=expires_at)

    def get_session(self, token: str) -> Optional[SessionRecord]:
        with self.Session() as session:
            row = session.get(SessionRow, token)
            if not row:
                return None
            return SessionRecord(
                token=row.token, user_id=row.user_id, expires_at=row.expires_at
            )

    def delete_session(self, token: str) -> None:
        with self.Session() as session:
            row = session.get(SessionRow, token)
            if row:
                session.delete(row)
                session.commit()

    def delete_user_sessions(self, user_id: str) -> int:
        with self.Session() as session:
            deleted = (
                session.query(SessionRow)
                .filter(SessionRow.user_id == user_id)
                .delete(synchronize_session=False)
            )
            session.commit()
            return deleted or 0

    def delete_expired_sessions(self, now: Optional[float] = None) -> int:
        cutoff = _now(now)
        with self.Session() as session:
            deleted = (
                session.query(SessionRow)
                .filter(SessionRow.expires_at <= cutoff)
                .delete(synchronize_session=False)
            )
            session.commit()
            return deleted or 0

    # ------------------------------------------------------------------
    # Arches and membership

    def create_arch(
        self,
        name: str,
        creator_id: str,
        invite_code: str,
        *,
        description: str = "",
        settings: Optional[ArchSettings] = None,
        now: Optional[float] = None,
    ) -> ArchRecord:
        now = _now(now)
        settings = settings or ArchSettings()
        arch_id = _new_id()
        with self.Session() as session:
            row = ArchRow(
                arch_id=arch_id,
                name=name,
                description=description or "",
                creator_id=creator_id,
                invite_code=invite_code,
                question_time=settings.question_time,
                response_deadline=settings.response_deadline,
                timezone=settings.timezone,
                lifecycle=Lifecycle.ACTIVE.value,
                created_at=now,
                updated_at=now,
            )
            row.members.append(
                ArchMemberRow(
                    id=_new_id(),
                    arch_id=arch_id,
                    user_id=creator_id,
                    role=MemberRole.ADMIN.value,
                    joined_at=now,
                )
            )
            session.add(row)
            session.commit()
            return self._to_arch_record(row)

    def get_arch(
        self, arch_id: str, *, include_deleted: bool = False
    ) -> Optional[ArchRecord]:
        with self.Session() as session:
            row = session.get(ArchRow, arch_id)
            if not row:
                return None
            if not include_deleted and row.lifecycle != Lifecycle.ACTIVE.value:
                return None
            return self._to_arch_record(row)

    def get_arch_by_invite_code(self, invite_code: str) -> Optional[ArchRecord]:
        with self.Session() as session:
            stmt = select(ArchRow).where(
                ArchRow.invite_code == invite_code,
                ArchRow.lifecycle == Lifecycle.ACTIVE.value,
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_arch_record(row) if row else None

    def invite_code_exists(self, invite_code: str) -> bool:
        with self.Session() as session:
            stmt = select(func.count()).select_from(ArchRow).where(
                ArchRow.invite_code == invite_code
            )
            return session.execute(stmt).scalar_one() > 0

    def list_active_arches(self) -> list[ArchRecord]:
        with self.Session() as session:
            stmt = (
                select(ArchRow)
                .where(ArchRow.lifecycle == Lifecycle.ACTIVE.value)
                .order_by(ArchRow.created_at.asc())
            )
            return [self._to_arch_record(row) for row in session.execute(stmt).scalars()]

    def list_arches_for_user(self, user_id: str) -> list[ArchRecord]:
        with self.Session() as session:
            stmt = (
                select(ArchRow)
                .join(ArchMemberRow, ArchMemberRow.arch_id == ArchRow.arch_id)
                .where(
                    ArchMemberRow.user_id == user_id,
                    ArchRow.lifecycle == Lifecycle.ACTIVE.value,
                )
                .order_by(ArchRow.created_at.asc())
            )
            return [self._to_arch_record(row) for row in session.execute(stmt).scalars()]

    def update_arch(
        self,
        arch_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        settings: Optional[ArchSettings] = None,
        invite_code: Optional[str] = None,
        lifecycle: Optional[Lifecycle] = None,
        now: Optional[float] = None,
    ) -> Optional[ArchRecord]:
        with self.Session() as session:
            row = session.get(ArchRow, arch_id)
            if not row:
                return None
            if name is not None:
                row.name = name
            if description is not None:
                row.description = description
            if settings is not None:
                row.question_time = settings.question_time
                row.response_deadline = settings.response_deadline
                row.timezone = settings.timezone
            if invite_code is not None:
                row.invite_code = invite_code
            if lifecycle is not None:
                row.lifecycle = lifecycle.value
            row.updated_at = _now(now)
            session.commit()
            return self._to_arch_record(row)

    def add_member(
        self,
        arch_id: str,
        user_id: str,
        role: MemberRole = MemberRole.MEMBER,
        *,
        now: Optional[float] = None,
    ) -> bool:
        """Add a member; returns False when the user already belongs to the arch."""
        with self.Session() as session:
            session.add(
                ArchMemberRow(
                    id=_new_id(),
                    arch_id=arch_id,
                    user_id=user_id,
                    role=role.value,
                    joined_at=_now(now),
                )
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            return True

    def remove_member(self, arch_id: str, user_id: str) -> bool:
        with self.Session() as session:
            deleted = (
                session.query(ArchMemberRow)
                .filter(
                    ArchMemberRow.arch_id == arch_id,
                    ArchMemberRow.user_id == user_id,
                )
                .delete(synchronize_session=False)
            )
            session.commit()
            return bool(deleted)

    def set_member_role(self, arch_id: str, user_id: str, role: MemberRole) -> bool:
        with self.Session() as session:
            result = session.execute(
                update(ArchMemberRow)
                .where(
                    ArchMemberRow.arch_id == arch_id,
                    ArchMemberRow.user_id == user_id,
                )
                .values(role=role.value)
            )
            session.commit()
            return (result.rowcount or 0) > 0

    # ------------------------------------------------------------------
    # Daily questions and responses

    def create_question(
        self,
        arch_id: str,
        question_date: str,
        asker_id: str,
        about_user_id: str,
        question: str,
        deadline: float,
        *,
        now: Optional[float] = None,
    ) -> DailyQuestionRecord:
        with self.Session() as session:
            row = DailyQuestionRow(
                question_id=_new_id(),
                arch_id=arch_id,
                question_date=question_date,
                asker_id=asker_id,
                about_user_id=about_user_id,
                question=question,
                deadline=deadline,
                processed=False,
                created_at=_now(now),
            )
            session.add(row)
            session.commit()
            return self._to_question_record(row)

    def get_question(self, question_id: str) -> Optional[DailyQuestionRecord]:
        with self.Session() as session:
            row = session.get(DailyQuestionRow, question_id)
            return self._to_question_record(row) if row else None

    def has_questions_for_date(self, arch_id: str, question_date: str) -> bool:
        with self.Session() as session:
            stmt = select(func.count()).select_from(DailyQuestionRow).where(
                DailyQuestionRow.arch_id == arch_id,
                DailyQuestionRow.question_date == question_date,
            )
            return session.execute(stmt).scalar_one() > 0

    def list_questions(
        self,
        *,
        arch_id: Optional[str] = None,
        arch_ids: Optional[Iterable[str]] = None,
        asker_id: Optional[str] = None,
        about_user_id: Optional[str] = None,
        question_date: Optional[str] = None,
        since_date: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[DailyQuestionRecord]:
        """Questions matching every given filter, newest date first."""
        with self.Session() as session:
            stmt = select(DailyQuestionRow)
            if arch_id is not None:
                stmt = stmt.where(DailyQuestionRow.arch_id == arch_id)
            if arch_ids is not None:
                stmt = stmt.where(DailyQuestionRow.arch_id.in_(list(arch_ids)))
            if asker_id is not None:
                stmt = stmt.where(DailyQuestionRow.asker_id == asker_id)
            if about_user_id is not None:
                stmt = stmt.where(DailyQuestionRow.about_user_id == about_user_id)
            if question_date is not None:
                stmt = stmt.where(DailyQuestionRow.question_date == question_date)
            if since_date is not None:
                stmt = stmt.where(DailyQuestionRow.question_date >= since_date)
            stmt = stmt.order_by(
                DailyQuestionRow.question_date.desc(),
                DailyQuestionRow.created_at.desc(),
            ).offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)
            return [
                self._to_question_record(row) for row in session.execute(stmt).scalars()
            ]

    def list_due_questions(self, now: Optional[float] = None) -> list[DailyQuestionRecord]:
        with self.Session() as session:
            stmt = (
                select(DailyQuestionRow)
                .where(
                    DailyQuestionRow.processed.is_(False),
                    DailyQuestionRow.deadline <= _now(now),
                )
                .order_by(DailyQuestionRow.deadline.asc())
            )
            return [
                self._to_question_record(row) for row in session.execute(stmt).scalars()
            ]

    def list_open_questions(
        self, now: float, until: float
    ) -> list[DailyQuestionRecord]:
        """Unprocessed questions whose deadline falls in (now, until]."""
        with self.Session() as session:
            stmt = (
                select(DailyQuestionRow)
                .where(
                    DailyQuestionRow.processed.is_(False),
                    DailyQuestionRow.deadline > now,
                    DailyQuestionRow.deadline <= until,
                )
                .order_by(DailyQuestionRow.deadline.asc())
            )
            return [
                self._to_question_record(row) for row in session.execute(stmt).scalars()
            ]

    def mark_question_processed(self, question_id: str) -> bool:
        """Flip processed from False to True; False if it was already set."""
        with self.Session() as session:
            result = session.execute(
                update(DailyQuestionRow)
                .where(
                    DailyQuestionRow.question_id == question_id,
                    DailyQuestionRow.processed.is_(False),
                )
                .values(processed=True)
            )
            session.commit()
            return (result.rowcount or 0) > 0

    def upsert_response(
        self,
        question_id: str,
        user_id: str,
        text: str,
        passed: bool,
        *,
        now: Optional[float] = None,
    ) -> ResponseRecord:
        now = _now(now)
        values = {
            "text": text,
            "passed": passed,
            "shared_with_arch": False,
            "submitted_at": now,
        }
        with self.Session() as session:
            row = self._find_response_row(session, question_id, user_id)
            if row is None:
                row = QuestionResponseRow(
                    response_id=_new_id(),
                    question_id=question_id,
                    user_id=user_id,
                    **values,
                )
                session.add(row)
                try:
                    session.commit()
                    return self._to_response_record(row)
                except IntegrityError:
                    session.rollback()
                    row = self._find_response_row(session, question_id, user_id)
            for key, value in values.items():
                setattr(row, key, value)
            session.commit()
            return self._to_response_record(row)

    def _find_response_row(
        self, session: Session, question_id: str, user_id: str
    ) -> Optional[QuestionResponseRow]:
        stmt = select(QuestionResponseRow).where(
            QuestionResponseRow.question_id == question_id,
            QuestionResponseRow.user_id == user_id,
        )
        return session.execute(stmt).scalar_one_or_none()

    def get_response(self, response_id: str) -> Optional[ResponseRecord]:
        with self.Session() as session:
            row = session.get(QuestionResponseRow, response_id)
            return self._to_response_record(row) if row else None

    def delete_response(self, question_id: str, user_id: str) -> bool:
        with self.Session() as session:
            row = self._find_response_row(session, question_id, user_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def set_response_shared(self, response_id: str) -> bool:
        """Mark a non-passed response as shared; False if it already was."""
        with self.Session() as session:
            result = session.execute(
                update(QuestionResponseRow)
                .where(
                    QuestionResponseRow.response_id == response_id,
                    QuestionResponseRow.shared_with_arch.is_(False),
                    QuestionResponseRow.passed.is_(False),
                )
                .values(shared_with_arch=True)
            )
            session.commit()
            return (result.rowcount or 0) > 0

    def list_user_responses(
        self,
        user_id: str,
        *,
        arch_id: Optional[str] = None,
        since: Optional[float] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[tuple[DailyQuestionRecord, ResponseRecord]]:
        """Responses written by a user with their questions, newest first."""
        with self.Session() as session:
            stmt = (
                select(QuestionResponseRow, DailyQuestionRow)
                .join(
                    DailyQuestionRow,
                    DailyQuestionRow.question_id == QuestionResponseRow.question_id,
                )
                .where(QuestionResponseRow.user_id == user_id)
            )
            if arch_id is not None:
                stmt = stmt.where(DailyQuestionRow.arch_id == arch_id)
            if since is not None:
                stmt = stmt.where(QuestionResponseRow.submitted_at >= since)
            stmt = stmt.order_by(QuestionResponseRow.submitted_at.desc()).offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)
            return [
                (self._to_question_record(question), self._to_response_record(response))
                for response, question in session.execute(stmt).all()
            ]

    def list_shared_responses(
        self, arch_id: str, question_date: str
    ) -> list[tuple[DailyQuestionRecord, ResponseRecord]]:
        with self.Session() as session:
            stmt = (
                select(QuestionResponseRow, DailyQuestionRow)
                .join(
                    DailyQuestionRow,
                    DailyQuestionRow.question_id == QuestionResponseRow.question_id,
                )
                .where(
                    DailyQuestionRow.arch_id == arch_id,
                    DailyQuestionRow.question_date == question_date,
                    QuestionResponseRow.shared_with_arch.is_(True),
                    QuestionResponseRow.passed.is_(False),
                )
                .order_by(QuestionResponseRow.submitted_at.desc())
            )
            return [
                (self._to_question_record(question), self._to_response_record(response))
                for response, question in session.execute(stmt).all()
            ]

    # ------------------------------------------------------------------
    # Posts

    def create_post(
        self,
        arch_id: str,
        author_id: str,
        content: str,
        media: Optional[list[MediaItem]] = None,
        *,
        now: Optional[float] = None,
    ) -> PostRecord:
        now = _now(now)
        with self.Session() as session:
            row = PostRow(
                post_id=_new_id(),
                arch_id=arch_id,
                author_id=author_id,
                content=content,
                media=media_to_json(media or []),
                lifecycle=Lifecycle.ACTIVE.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            return self._to_post_record(row)

    def get_post(
        self, post_id: str, *, include_deleted: bool = False
    ) -> Optional[PostRecord]:
        with self.Session() as session:
            row = session.get(PostRow, post_id)
            if not row:
                return None
            if not include_deleted and row.lifecycle != Lifecycle.ACTIVE.value:
                return None
            return self._to_post_record(row)

    def _post_filters(
        self,
        arch_id: str,
        author_id: Optional[str],
        since: Optional[float],
    ) -> list:
        filters = [PostRow.arch_id == arch_id, PostRow.lifecycle == Lifecycle.ACTIVE.value]
        if author_id is not None:
            filters.append(PostRow.author_id == author_id)
        if since is not None:
            filters.append(PostRow.created_at >= since)
        return filters

    def list_posts(
        self,
        arch_id: str,
        *,
        offset: int = 0,
        limit: Optional[int] = None,
        author_id: Optional[str] = None,
        since: Optional[float] = None,
    ) -> list[PostRecord]:
        """Active posts of an arch, newest first."""
        with self.Session() as session:
            stmt = (
                select(PostRow)
                .where(*self._post_filters(arch_id, author_id, since))
                .order_by(PostRow.created_at.desc())
                .offset(offset)
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            return [self._to_post_record(row) for row in session.execute(stmt).scalars()]

    def count_posts(
        self,
        arch_id: str,
        *,
        author_id: Optional[str] = None,
        since: Optional[float] = None,
    ) -> int:
        with self.Session() as session:
            stmt = select(func.count()).select_from(PostRow).where(
                *self._post_filters(arch_id, author_id, since)
            )
            return session.execute(stmt).scalar_one()

    def set_post_lifecycle(
        self, post_id: str, lifecycle: Lifecycle, *, now: Optional[float] = None
    ) -> bool:
        with self.Session() as session:
            result = session.execute(
                update(PostRow)
                .where(PostRow.post_id == post_id)
                .values(lifecycle=lifecycle.value, updated_at=_now(now))
            )
            session.commit()
            return (result.rowcount or 0) > 0

    def toggle_like(
        self, post_id: str, user_id: str, *, now: Optional[float] = None
    ) -> bool:
        """Add or remove the user's like; returns True when the post is now liked."""
        with self.Session() as session:
            deleted = (
                session.query(PostLikeRow)
                .filter(PostLikeRow.post_id == post_id, PostLikeRow.user_id == user_id)
                .delete(synchronize_session=False)
            )
            if deleted:
                session.commit()
                return False
            session.add(
                PostLikeRow(
                    id=_new_id(), post_id=post_id, user_id=user_id, liked_at=_now(now)
                )
            )
            try:
                session.commit()
            except IntegrityError:
                # A concurrent request liked it first.
                session.rollback()
            return True

    def add_comment(
        self,
        post_id: str,
        user_id: str,
        content: str,
        *,
        now: Optional[float] = None,
    ) -> CommentRecord:
        now = _now(now)
        with self.Session() as session:
            row = PostCommentRow(
                comment_id=_new_id(),
                post_id=post_id,
                user_id=user_id,
                content=content,
                created_at=now,
            )
            session.add(row)
            session.execute(
                update(PostRow).where(PostRow.post_id == post_id).values(updated_at=now)
            )
            session.commit()
            return CommentRecord(
                comment_id=row.comment_id,
                user_id=user_id,
                content=content,
                created_at=now,
            )

    # ------------------------------------------------------------------
    # Get-togethers

    def create_get_together(
        self,
        arch_id: str,
        creator_id: str,
        title: str,
        event_type: EventType,
        scheduled_for: float,
        invitee_ids: Iterable[str],
        *,
        description: Optional[str] = None,
        location: Optional[str] = None,
        virtual_link: Optional[str] = None,
        now: Optional[float] = None,
    ) -> GetTogetherRecord:
        now = _now(now)
        get_together_id = _new_id()
        with self.Session() as session:
            row = GetTogetherRow(
                get_together_id=get_together_id,
                arch_id=arch_id,
                creator_id=creator_id,
                title=title,
                description=description,
                event_type=event_type.value,
                scheduled_for=scheduled_for,
                location=location,
                virtual_link=virtual_link,
                status=EventStatus.PLANNING.value,
                created_at=now,
                updated_at=now,
            )
            seen: set[str] = set()
            for position, user_id in enumerate(invitee_ids):
                if user_id in seen:
                    continue
                seen.add(user_id)
                row.invitees.append(
                    InviteeRow(
                        id=_new_id(),
                        get_together_id=get_together_id,
                        user_id=user_id,
                        position=position,
                        status=RsvpStatus.PENDING.value,
                    )
                )
            session.add(row)
            session.commit()
            return self._to_get_together_record(row)

    def get_get_together(self, get_together_id: str) -> Optional[GetTogetherRecord]:
        with self.Session() as session:
            row = session.get(GetTogetherRow, get_together_id)
            return self._to_get_together_record(row) if row else None

    def list_get_togethers(
        self,
        arch_ids: Iterable[str],
        *,
        status: Optional[EventStatus] = None,
        scheduled_after: Optional[float] = None,
        since: Optional[float] = None,
    ) -> list[GetTogetherRecord]:
        """Get-togethers in the given arches, soonest first."""
        with self.Session() as session:
            stmt = select(GetTogetherRow).where(
                GetTogetherRow.arch_id.in_(list(arch_ids))
            )
            if status is not None:
                stmt = stmt.where(GetTogetherRow.status == status.value)
            if scheduled_after is not None:
                stmt = stmt.where(GetTogetherRow.scheduled_for >= scheduled_after)
            if since is not None:
                stmt = stmt.where(GetTogetherRow.created_at >= since)
            stmt = stmt.order_by(GetTogetherRow.scheduled_for.asc())
            return [
                self._to_get_together_record(row)
                for row in session.execute(stmt).scalars()
            ]

    def update_get_together(
        self,
        get_together_id: str,
        *,
        event_type: Optional[EventType] = None,
        status: Optional[EventStatus] = None,
        now: Optional[float] = None,
        **fields,
    ) -> Optional[GetTogetherRecord]:
        unknown = set(fields) - _GET_TOGETHER_FIELDS
        if unknown:
            raise ValueError(f"Unknown get-together fields: {sorted(unknown)}")
        with self.Session() as session:
            row = session.get(GetTogetherRow, get_together_id)
            if not row:
                return None
            for key, value in fields.items():
                setattr(row, key, value)
            if event_type is not None:
                row.event_type = event_type.value
            if status is not None:
                row.status = status.value
            row.updated_at = _now(now)
            session.commit()
            return self._to_get_together_record(row)

    def delete_get_together(self, get_together_id: str) -> bool:
        with self.Session() as session:
            row = session.get(GetTogetherRow, get_together_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def set_rsvp(
        self,
        get_together_id: str,
        user_id: str,
        status: RsvpStatus,
        *,
        now: Optional[float] = None,
    ) -> bool:
        """Record an invitee's RSVP; False when the user is not invited."""
        with self.Session() as session:
            result = session.execute(
                update(InviteeRow)
                .where(
                    InviteeRow.get_together_id == get_together_id,
                    InviteeRow.user_id == user_id,
                )
                .values(status=status.value, responded_at=_now(now))
            )
            session.commit()
            return (result.rowcount or 0) > 0

    def add_timeline_entry(
        self,
        get_together_id: str,
        user_id: str,
        entry_type: TimelineEntryType,
        content: str,
        media: Optional[list[MediaItem]] = None,
        *,
        now: Optional[float] = None,
    ) -> TimelineEntryRecord:
        with self.Session() as session:
            row = TimelineEntryRow(
                entry_id=_new_id(),
                get_together_id=get_together_id,
                user_id=user_id,
                entry_type=entry_type.value,
                content=content,
                media=media_to_json(media or []),
                timestamp=_now(now),
            )
            session.add(row)
            session.commit()
            return self._to_timeline_record(row)

    def complete_past_get_togethers(self, before: float) -> int:
        """Mark events scheduled before the cutoff as completed."""
        with self.Session() as session:
            result = session.execute(
                update(GetTogetherRow)
                .where(
                    GetTogetherRow.scheduled_for < before,
                    GetTogetherRow.status != EventStatus.COMPLETED.value,
                )
                .values(status=EventStatus.COMPLETED.value, updated_at=time.time())
            )
            session.commit()
            return result.rowcount or 0

    def count_get_togethers(self, arch_id: str, *, since: Optional[float] = None) -> int:
        with self.Session() as session:
            stmt = select(func.count()).select_from(GetTogetherRow).where(
                GetTogetherRow.arch_id == arch_id
            )
            if since is not None:
                stmt = stmt.where(GetTogetherRow.created_at >= since)
            return session.execute(stmt).scalar_one()

    # ------------------------------------------------------------------
    # Messages

    def create_message(
        self,
        arch_id: str,
        sender_id: str,
        recipient_id: str,
        content: str,
        media: Optional[list[MediaItem]] = None,
        *,
        now: Optional[float] = None,
    ) -> MessageRecord:
        with self.Session() as session:
            row = MessageRow(
                message_id=_new_id(),
                arch_id=arch_id,
                sender_id=sender_id,
                recipient_id=recipient_id,
                content=content,
                media=media_to_json(media or []),
                lifecycle=Lifecycle.ACTIVE.value,
                created_at=_now(now),
            )
            session.add(row)
            session.commit()
            return self._to_message_record(row)

    def get_message(self, message_id: str) -> Optional[MessageRecord]:
        with self.Session() as session:
            row = session.get(MessageRow, message_id)
            if not row or row.lifecycle != Lifecycle.ACTIVE.value:
                return None
            return self._to_message_record(row)

    def _conversation_filter(self, arch_id: str, user_a: str, user_b: str):
        return and_(
            MessageRow.arch_id == arch_id,
            MessageRow.lifecycle == Lifecycle.ACTIVE.value,
            or_(
                and_(MessageRow.sender_id == user_a, MessageRow.recipient_id == user_b),
                and_(MessageRow.sender_id == user_b, MessageRow.recipient_id == user_a),
            ),
        )

    def list_conversation(
        self,
        arch_id: str,
        user_a: str,
        user_b: str,
        *,
        offset: int = 0,
        limit: Optional[int] = None,
        query: Optional[str] = None,
    ) -> list[MessageRecord]:
        """Messages between two users, newest first."""
        with self.Session() as session:
            stmt = select(MessageRow).where(
                self._conversation_filter(arch_id, user_a, user_b)
            )
            if query:
                stmt = stmt.where(
                    func.lower(MessageRow.content).like(f"%{query.lower()}%")
                )
            stmt = stmt.order_by(MessageRow.created_at.desc()).offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)
            return [
                self._to_message_record(row) for row in session.execute(stmt).scalars()
            ]

    def list_user_messages(self, arch_id: str, user_id: str) -> list[MessageRecord]:
        """Every active message the user sent or received in an arch, newest first."""
        with self.Session() as session:
            stmt = (
                select(MessageRow)
                .where(
                    MessageRow.arch_id == arch_id,
                    MessageRow.lifecycle == Lifecycle.ACTIVE.value,
                    or_(
                        MessageRow.sender_id == user_id,
                        MessageRow.recipient_id == user_id,
                    ),
                )
                .order_by(MessageRow.created_at.desc())
            )
            return [
                self._to_message_record(row) for row in session.execute(stmt).scalars()
            ]

    def list_arch_messages(
        self, arch_id: str, *, since: Optional[float] = None
    ) -> list[MessageRecord]:
        with self.Session() as session:
            stmt = select(MessageRow).where(
                MessageRow.arch_id == arch_id,
                MessageRow.lifecycle == Lifecycle.ACTIVE.value,
            )
            if since is not None:
                stmt = stmt.where(MessageRow.created_at >= since)
            stmt = stmt.order_by(MessageRow.created_at.desc())
            return [
                self._to_message_record(row) for row in session.execute(stmt).scalars()
            ]

    def count_unread(
        self, arch_id: str, recipient_id: str, sender_id: Optional[str] = None
    ) -> int:
        with self.Session() as session:
            stmt = select(func.count()).select_from(MessageRow).where(
                MessageRow.arch_id == arch_id,
                MessageRow.recipient_id == recipient_id,
                MessageRow.read_at.is_(None),
                MessageRow.lifecycle == Lifecycle.ACTIVE.value,
            )
            if sender_id is not None:
                stmt = stmt.where(MessageRow.sender_id == sender_id)
            return session.execute(stmt).scalar_one()

    def mark_message_read(self, message_id: str, *, now: Optional[float] = None) -> bool:
        with self.Session() as session:
            result = session.execute(
                update(MessageRow)
                .where(MessageRow.message_id == message_id, MessageRow.read_at.is_(None))
                .values(read_at=_now(now))
            )
            session.commit()
            return (result.rowcount or 0) > 0

    def mark_conversation_read(
        self,
        arch_id: str,
        recipient_id: str,
        sender_id: str,
        *,
        now: Optional[float] = None,
    ) -> int:
        with self.Session() as session:
            result = session.execute(
                update(MessageRow)
                .where(
                    MessageRow.arch_id == arch_id,
                    MessageRow.recipient_id == recipient_id,
                    MessageRow.sender_id == sender_id,
                    MessageRow.read_at.is_(None),
                    MessageRow.lifecycle == Lifecycle.ACTIVE.value,
                )
                .values(read_at=_now(now))
            )
            session.commit()
            return result.rowcount or 0

    def set_message_lifecycle(self, message_id: str, lifecycle: Lifecycle) -> bool:
        with self.Session() as session:
            result = session.execute(
                update(MessageRow)
                .where(MessageRow.message_id == message_id)
                .values(lifecycle=lifecycle.value)
            )
            session.commit()
            return (result.rowcount or 0) > 0
