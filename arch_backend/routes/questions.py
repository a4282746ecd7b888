"""
Daily question endpoints.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from arch_backend.config import Settings, get_settings
from arch_backend.db import PostgresDbClient
from arch_backend.dependencies import (
    Clock,
    get_clock,
    get_current_user,
    get_db_client,
    get_lifecycle,
)
from arch_backend.lifecycle import DailyQuestionLifecycle
from arch_backend.membership import load_member_arch
from arch_backend.records import DailyQuestionRecord, UserRecord
from arch_backend.routes.common import todays_questions
from arch_backend.schemas import RespondRequest
from arch_backend.serializers import question_json, question_user_ids
from arch_backend.stats import arch_question_stats
from arch_backend.timeutils import days_before, local_date

logger = logging.getLogger(__name__)

router = APIRouter()


def _render_many(db: PostgresDbClient, questions: list[DailyQuestionRecord]) -> list[dict]:
    users = db.get_users(question_user_ids(questions))
    return [question_json(q, users) for q in questions]


def _require_manual_triggers(settings: Settings = Depends(get_settings)) -> None:
    if not settings.enable_manual_triggers:
        raise HTTPException(status_code=404, detail="Not Found")


@router.get("/today")
def todays_questions_for_me(
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    lifecycle: DailyQuestionLifecycle = Depends(get_lifecycle),
    clock: Clock = Depends(get_clock),
):
    arches = db.list_arches_for_user(user.user_id)
    questions = todays_questions(db, arches, clock(), asker_id=user.user_id)
    users = db.get_users(question_user_ids(questions))
    return [
        question_json(
            q,
            users,
            extra={
                "status": lifecycle.question_status(q, user.user_id).value,
                "minutesRemaining": lifecycle.minutes_remaining(q),
            },
        )
        for q in questions
    ]


@router.get("/about-me")
def questions_about_me(
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    arches = db.list_arches_for_user(user.user_id)
    questions = todays_questions(db, arches, clock(), about_user_id=user.user_id)
    return _render_many(db, questions)


@router.post("/{question_id}/respond")
def respond(
    question_id: str,
    payload: RespondRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    lifecycle: DailyQuestionLifecycle = Depends(get_lifecycle),
):
    question, _ = lifecycle.respond(question_id, user.user_id, payload.response)
    logger.info("User %s responded to question %s", user.user_id, question_id)
    return _render_many(db, [question])[0]


@router.post("/{question_id}/pass")
def pass_question(
    question_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    lifecycle: DailyQuestionLifecycle = Depends(get_lifecycle),
):
    question, _ = lifecycle.pass_question(question_id, user.user_id)
    return _render_many(db, [question])[0]


@router.get("/arch/{arch_id}")
def arch_questions(
    arch_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    load_member_arch(db, arch_id, user.user_id)
    return _render_many(db, db.list_questions(arch_id=arch_id))


@router.get("/arch/{arch_id}/stats")
def arch_question_statistics(
    arch_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    arch = load_member_arch(db, arch_id, user.user_id)
    today = local_date(arch.settings.timezone, clock())
    return arch_question_stats(
        db.list_questions(arch_id=arch_id, question_date=today),
        db.list_questions(arch_id=arch_id, since_date=days_before(today, 6)),
        len(arch.members),
    )


@router.post("/trigger-daily", dependencies=[Depends(_require_manual_triggers)])
def trigger_daily(
    user: UserRecord = Depends(get_current_user),
    lifecycle: DailyQuestionLifecycle = Depends(get_lifecycle),
):
    created = lifecycle.create_daily_questions()
    logger.info("Manual daily question run by %s created %d", user.user_id, created)
    return {"message": "Daily questions created successfully", "created": created}


@router.post("/trigger-processing", dependencies=[Depends(_require_manual_triggers)])
def trigger_processing(
    user: UserRecord = Depends(get_current_user),
    lifecycle: DailyQuestionLifecycle = Depends(get_lifecycle),
):
    processed = lifecycle.process_due_questions()
    return {"message": "Daily responses processed successfully", "processed": processed}
