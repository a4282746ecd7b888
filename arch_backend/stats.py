"""
Aggregations behind the stats and activity endpoints.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, Optional

from arch_backend.records import (
    DailyQuestionRecord,
    GetTogetherRecord,
    MessageRecord,
    RsvpStatus,
)


def percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole > 0 else 0


def per_day(count: int, days: int) -> float:
    return round(count / days, 1) if days > 0 else 0.0


def response_stats(questions: Iterable[DailyQuestionRecord], user_id: str) -> dict:
    """Counts over questions asked to the user."""
    asked = [q for q in questions if q.asker_id == user_id]
    answered = [q for q in asked if q.response_for(user_id) is not None]
    responses = [
        response
        for response in (q.response_for(user_id) for q in answered)
        if response.has_content
    ]
    return {
        "totalQuestions": len(asked),
        "questionsAnswered": len(answered),
        "totalResponses": len(responses),
        "responseRate": percent(len(answered), len(asked)),
    }


def streak(
    questions: Iterable[DailyQuestionRecord],
    user_id: str,
    today: str,
    days: int = 30,
) -> dict:
    """
    Consecutive local days on which the user answered at least one question.

    The current streak counts back from today, or from yesterday when today's
    question has not been answered yet.
    """
    answered_dates = {
        q.question_date
        for q in questions
        if q.asker_id == user_id and q.response_for(user_id) is not None
    }
    asked_dates = sorted(
        (q.question_date for q in questions if q.asker_id == user_id), reverse=True
    )
    start = date.fromisoformat(today)
    window = [(start - timedelta(days=i)).isoformat() for i in range(days)]

    longest = run = 0
    for day in window:
        if day in answered_dates:
            run += 1
            longest = max(longest, run)
        else:
            run = 0

    current = 0
    for index, day in enumerate(window):
        if day in answered_dates:
            current += 1
        elif index == 0:
            continue
        else:
            break

    return {
        "currentStreak": current,
        "longestStreak": longest,
        "lastActiveDate": asked_dates[0] if asked_dates else None,
    }


def arch_question_stats(
    today_questions: list[DailyQuestionRecord],
    week_questions: list[DailyQuestionRecord],
    member_count: int,
) -> dict:
    today_responses = sum(
        1 for q in today_questions for r in q.responses if not r.passed
    )
    # One response per question is possible, from its asker.
    expected = len(week_questions)
    actual = sum(1 for q in week_questions for r in q.responses if not r.passed)
    return {
        "todayQuestions": len(today_questions),
        "todayResponses": today_responses,
        "weeklyCompletionRate": percent(actual, expected),
        "archMemberCount": member_count,
    }


def rsvp_stats(get_together: GetTogetherRecord) -> dict:
    counts = {status: 0 for status in RsvpStatus}
    for invitee in get_together.invitees:
        counts[invitee.status] += 1
    total = len(get_together.invitees)
    responded = counts[RsvpStatus.ACCEPTED] + counts[RsvpStatus.DECLINED]
    return {
        "totalInvited": total,
        "accepted": counts[RsvpStatus.ACCEPTED],
        "declined": counts[RsvpStatus.DECLINED],
        "pending": counts[RsvpStatus.PENDING],
        "timelineEntries": len(get_together.timeline),
        "rsvpRate": percent(responded, total),
    }


def message_stats(messages: list[MessageRecord]) -> dict:
    return {
        "totalMessages": len(messages),
        "messagesWithMedia": sum(1 for m in messages if m.media),
        "activeUsers": len({m.sender_id for m in messages}),
    }


def conversation_summaries(
    messages: Iterable[MessageRecord], user_id: str
) -> list[dict]:
    """Group newest-first messages by the other participant."""
    summaries: dict[str, dict] = {}
    for message in messages:
        other = message.recipient_id if message.sender_id == user_id else message.sender_id
        summary = summaries.get(other)
        if summary is None:
            summary = summaries[other] = {
                "userId": other,
                "lastMessage": message,
                "unreadCount": 0,
                "messageCount": 0,
            }
        summary["messageCount"] += 1
        if message.recipient_id == user_id and message.read_at is None:
            summary["unreadCount"] += 1
    return list(summaries.values())


def active_user_count(
    user_ids: Iterable[Optional[str]], member_ids: Iterable[str]
) -> int:
    members = set(member_ids)
    return len({uid for uid in user_ids if uid in members})
