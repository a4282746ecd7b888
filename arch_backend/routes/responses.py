"""
Response endpoints: submit, edit, delete, view, history and sharing.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from arch_backend.db import PostgresDbClient
from arch_backend.dependencies import (
    Clock,
    get_clock,
    get_current_user,
    get_db_client,
    get_lifecycle,
)
from arch_backend.errors import Forbidden, NotFound
from arch_backend.lifecycle import DailyQuestionLifecycle
from arch_backend.membership import is_member, load_member_arch
from arch_backend.records import UserRecord
from arch_backend.routes.common import recent_questions, user_arches
from arch_backend.schemas import RespondRequest, SubmitResponseRequest
from arch_backend.serializers import (
    question_json,
    question_user_ids,
    response_json,
    user_summary,
)
from arch_backend.stats import response_stats
from arch_backend.timeutils import to_iso

router = APIRouter()


@router.post("/{question_id}", status_code=201)
def submit_response(
    question_id: str,
    payload: SubmitResponseRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    lifecycle: DailyQuestionLifecycle = Depends(get_lifecycle),
):
    question, response = lifecycle.submit_response(
        question_id, user.user_id, payload.response, passed=payload.passed
    )
    users = db.get_users(question_user_ids([question]))
    return {
        "message": "Response passed" if payload.passed else "Response submitted",
        "response": response_json(response, users),
        "question": question_json(question, users),
    }


@router.put("/{question_id}/response")
def update_response(
    question_id: str,
    payload: RespondRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    lifecycle: DailyQuestionLifecycle = Depends(get_lifecycle),
):
    question = db.get_question(question_id)
    if question is not None and question.response_for(user.user_id) is None:
        raise NotFound("Response not found")
    question, response = lifecycle.respond(question_id, user.user_id, payload.response)
    users = db.get_users(question_user_ids([question]))
    return {
        "message": "Response updated",
        "response": response_json(response, users),
    }


@router.delete("/{question_id}/response")
def delete_response(
    question_id: str,
    user: UserRecord = Depends(get_current_user),
    lifecycle: DailyQuestionLifecycle = Depends(get_lifecycle),
):
    lifecycle.delete_response(question_id, user.user_id)
    return {"message": "Response deleted"}


@router.get("/question/{question_id}")
def question_responses(
    question_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    question = db.get_question(question_id)
    if question is None:
        raise NotFound("Question not found")
    arch = db.get_arch(question.arch_id)
    if arch is None or not is_member(arch, user.user_id):
        raise Forbidden("Access denied")
    if not question.processed and question.about_user_id != user.user_id:
        raise HTTPException(status_code=403, detail="Responses not yet available")
    users = db.get_users(question_user_ids([question]))
    return {
        "questionId": question.question_id,
        "question": question.question,
        "aboutUser": user_summary(question.about_user_id, users),
        "responses": [
            response_json(r, users) for r in question.responses if r.has_content
        ],
        "totalResponses": len(question.responses),
    }


@router.get("/user/history")
def response_history(
    arch_id: Optional[str] = Query(default=None, alias="archId"),
    limit: int = Query(default=20, ge=1, le=100),
    skip: int = Query(default=0, ge=0),
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    if arch_id:
        load_member_arch(db, arch_id, user.user_id)
    pairs = db.list_user_responses(
        user.user_id, arch_id=arch_id, limit=limit, offset=skip
    )
    users = db.get_users(q.about_user_id for q, _ in pairs)
    return [
        {
            "questionId": q.question_id,
            "responseId": r.response_id,
            "question": q.question,
            "aboutUser": user_summary(q.about_user_id, users),
            "archId": q.arch_id,
            "response": r.text,
            "passed": r.passed,
            "sharedWithArch": r.shared_with_arch,
            "submittedAt": to_iso(r.submitted_at),
            "date": q.question_date,
        }
        for q, r in pairs
    ]


@router.post("/{response_id}/share")
def share_response(
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
        "question": question_json(question, users),
    }


@router.get("/user/stats")
def response_statistics(
    arch_id: Optional[str] = Query(default=None, alias="archId"),
    days: int = Query(default=30, ge=1, le=365),
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    arches = user_arches(db, user.user_id, arch_id)
    questions = recent_questions(db, arches, clock(), days, asker_id=user.user_id)
    return response_stats(questions, user.user_id)
