"""
Helpers shared by the route modules.
"""

from __future__ import annotations

from typing import Iterable, Optional

from arch_backend.membership import load_member_arch
from arch_backend.records import ArchRecord, DailyQuestionRecord
from arch_backend.timeutils import days_before, local_date

SECONDS_PER_DAY = 24 * 60 * 60


def user_arches(db, user_id: str, arch_id: Optional[str] = None) -> list[ArchRecord]:
    """The caller's active arches, narrowed to one (membership checked) if given."""
    if arch_id:
        return [load_member_arch(db, arch_id, user_id)]
    return db.list_arches_for_user(user_id)


def todays_questions(
    db,
    arches: Iterable[ArchRecord],
    now: float,
    *,
    asker_id: Optional[str] = None,
    about_user_id: Optional[str] = None,
) -> list[DailyQuestionRecord]:
    """Questions dated today in each arch's own timezone."""
    questions: list[DailyQuestionRecord] = []
    for arch in arches:
        questions.extend(
            db.list_questions(
                arch_id=arch.arch_id,
                question_date=local_date(arch.settings.timezone, now),
                asker_id=asker_id,
                about_user_id=about_user_id,
            )
        )
    return questions


def recent_questions(
    db,
    arches: Iterable[ArchRecord],
    now: float,
    days: int,
    **filters,
) -> list[DailyQuestionRecord]:
    """Questions dated within the last `days` local days of each arch."""
    questions: list[DailyQuestionRecord] = []
    for arch in arches:
        today = local_date(arch.settings.timezone, now)
        questions.extend(
            db.list_questions(
                arch_id=arch.arch_id, since_date=days_before(today, days), **filters
            )
        )
    return questions
