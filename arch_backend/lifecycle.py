"""
Daily question lifecycle: creation, responses, processing and sharing.

A question is created once per arch member per local day, accepts a single
response (or pass) from its asker until the deadline, is processed exactly
once after the deadline, and may then have its response shared with the arch
by the person it is about.
"""

from __future__ import annotations

import logging
import math
import random
import time
from typing import Callable, Optional

from arch_backend.errors import Forbidden, NotFound, StateConflict, ValidationFailed
from arch_backend.membership import is_member
from arch_backend.realtime import EventBus, broadcast
from arch_backend.records import (
    ArchRecord,
    DailyQuestionRecord,
    QuestionStatus,
    ResponseRecord,
)
from arch_backend.timeutils import at_local_time, local_date

logger = logging.getLogger(__name__)

QUESTION_TEMPLATES = [
    "What's something you admire about {name} lately?",
    "How has {name} made you smile recently?",
    "What's one way {name} has supported you this week?",
    "What do you hope {name} knows about how much they mean to the family?",
    "What's a favorite memory you have with {name}?",
    "How has {name} grown or changed in a positive way recently?",
    "What's something {name} does that makes you proud?",
    "What would you like to thank {name} for?",
    "What's a quality of {name}'s that you really appreciate?",
    "How does {name} make family gatherings better?",
    "What's something you've learned from {name}?",
    "What's your favorite thing about {name}'s personality?",
    "When did {name} last make you laugh out loud?",
    "What's a small thing {name} does that makes a big difference?",
    "What advice from {name} has stuck with you?",
    "What's a tradition you love sharing with {name}?",
    "What would you like to do together with {name} soon?",
    "What's something {name} is really good at?",
    "How has {name} shown kindness to someone recently?",
    "What's a story about {name} you'd love everyone to hear?",
]

NOT_AUTHORIZED_TO_RESPOND = "You are not authorized to respond to this question"
DEADLINE_PASSED = "Response deadline has passed"
EMPTY_RESPONSE = "Response cannot be empty"
ONLY_ABOUT_USER_CAN_SHARE = (
    "Only the person this response is about can share it to the family feed"
)
CANNOT_SHARE_PASSED = "Cannot share a passed response"
ALREADY_SHARED = "Response already shared to family feed"


class DailyQuestionLifecycle:
    def __init__(
        self,
        db,
        notifier,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
        events: Optional[EventBus] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.clock = clock
        self.rng = rng or random.Random()
        self.events = events

    def _publish(self, arch_id: str, event: str, payload: dict) -> None:
        if self.events is not None:
            broadcast(self.events, arch_id, event, payload)

    # ------------------------------------------------------------------
    # Scheduled steps

    def create_daily_questions(self) -> int:
        """Create today's questions for every eligible arch; returns how many."""
        created = 0
        for arch in self.db.list_active_arches():
            try:
                created += self._create_for_arch(arch)
            except Exception:
                logger.exception("Failed to create daily questions for arch %s", arch.arch_id)
        logger.info("Created %d daily questions", created)
        return created

    def _create_for_arch(self, arch: ArchRecord) -> int:
        now = self.clock()
        today = local_date(arch.settings.timezone, now)
        if self.db.has_questions_for_date(arch.arch_id, today):
            logger.debug("Arch %s already has questions for %s", arch.arch_id, today)
            return 0

        users = self.db.get_users(arch.member_ids)
        active = [users[uid] for uid in arch.member_ids if uid in users and users[uid].is_active]
        if len(active) < 2:
            logger.info(
                "Skipping arch %s: only %d active members", arch.arch_id, len(active)
            )
            return 0

        deadline = at_local_time(
            arch.settings.timezone, today, arch.settings.response_deadline
        )
        created = 0
        for asker in active:
            others = [user for user in active if user.user_id != asker.user_id]
            about = self.rng.choice(others)
            template = self.rng.choice(QUESTION_TEMPLATES)
            question = self.db.create_question(
                arch.arch_id,
                today,
                asker.user_id,
                about.user_id,
                template.replace("{name}", about.name),
                deadline,
                now=now,
            )
            created += 1
            self.notifier.send_to_user(
                asker.user_id,
                "🌅 Good morning!",
                f"New question about {about.name}",
                {
                    "type": "daily_question",
                    "archId": arch.arch_id,
                    "questionId": question.question_id,
                },
            )
        return created

    def process_due_questions(self) -> int:
        """Mark past-deadline questions processed and notify their subjects."""
        processed = 0
        for question in self.db.list_due_questions(self.clock()):
            try:
                if not self.db.mark_question_processed(question.question_id):
                    continue
                processed += 1
                valid = [r for r in question.responses if r.has_content]
                if not valid:
                    continue
                count = len(valid)
                self.notifier.send_to_user(
                    question.about_user_id,
                    "💝 Someone shared about you!",
                    f"{count} family member{'s' if count > 1 else ''} shared something about you",
                    {
                        "type": "response_shared",
                        "questionId": question.question_id,
                        "archId": question.arch_id,
                    },
                )
            except Exception:
                logger.exception("Failed to process question %s", question.question_id)
        logger.info("Processed %d daily questions", processed)
        return processed

    def send_reminders(self, window_seconds: float) -> int:
        """Remind askers who have not answered a question closing soon."""
        now = self.clock()
        reminded = 0
        for question in self.db.list_open_questions(now, now + window_seconds):
            if question.response_for(question.asker_id) is not None:
                continue
            try:
                about = self.db.get_user(question.about_user_id)
                about_name = about.name if about else "your family"
                minutes = self.minutes_remaining(question)
                self.notifier.send_to_user(
                    question.asker_id,
                    "⏰ Don't forget!",
                    f"Your question about {about_name} closes in {minutes} minutes",
                    {
                        "type": "daily_question",
                        "archId": question.arch_id,
                        "questionId": question.question_id,
                    },
                )
                reminded += 1
            except Exception:
                logger.exception("Failed to remind for question %s", question.question_id)
        return reminded

    # ------------------------------------------------------------------
    # Responses

    def submit_response(
        self, question_id: str, user_id: str, text: str = "", passed: bool = False
    ) -> tuple[DailyQuestionRecord, ResponseRecord]:
        question = self._load_answerable(question_id, user_id)
        cleaned = (text or "").strip()
        if not passed and not cleaned:
            raise ValidationFailed(EMPTY_RESPONSE)
        response = self.db.upsert_response(
            question_id,
            user_id,
            "" if passed else cleaned,
            passed,
            now=self.clock(),
        )
        self._publish(
            question.arch_id,
            "question-response",
            {
                "questionId": question_id,
                "userId": user_id,
                "passed": passed,
                "submittedAt": response.submitted_at,
            },
        )
        return self.db.get_question(question_id), response

    def respond(self, question_id: str, user_id: str, text: str):
        return self.submit_response(question_id, user_id, text, passed=False)

    def pass_question(self, question_id: str, user_id: str):
        return self.submit_response(question_id, user_id, "", passed=True)

    def delete_response(self, question_id: str, user_id: str) -> None:
        question = self._load_answerable(question_id, user_id)
        if not self.db.delete_response(question_id, user_id):
            raise NotFound("Response not found")
        self._publish(
            question.arch_id,
            "question-response-deleted",
            {"questionId": question_id, "userId": user_id},
        )

    def _load_answerable(self, question_id: str, user_id: str) -> DailyQuestionRecord:
        question = self.db.get_question(question_id)
        if question is None:
            raise NotFound("Question not found")
        arch = self.db.get_arch(question.arch_id)
        if question.asker_id != user_id or arch is None or not is_member(arch, user_id):
            raise Forbidden(NOT_AUTHORIZED_TO_RESPOND)
        if self.clock() >= question.deadline:
            raise StateConflict(DEADLINE_PASSED)
        return question

    def share_response(
        self, response_id: str, user_id: str
    ) -> tuple[DailyQuestionRecord, ResponseRecord]:
        response = self.db.get_response(response_id)
        if response is None:
            raise NotFound("Response not found")
        question = self.db.get_question(response.question_id)
        if question is None:
            raise NotFound("Question not found")
        arch = self.db.get_arch(question.arch_id)
        if question.about_user_id != user_id or arch is None or not is_member(arch, user_id):
            raise Forbidden(ONLY_ABOUT_USER_CAN_SHARE)
        if response.passed:
            raise StateConflict(CANNOT_SHARE_PASSED)
        if response.shared_with_arch or not self.db.set_response_shared(response_id):
            raise StateConflict(ALREADY_SHARED)
        shared = self.db.get_response(response_id)
        self._publish(
            question.arch_id,
            "response-shared",
            {
                "questionId": question.question_id,
                "responseId": response_id,
                "sharedBy": user_id,
            },
        )
        return self.db.get_question(question.question_id), shared

    # ------------------------------------------------------------------
    # Derived state

    def question_status(self, question: DailyQuestionRecord, user_id: str) -> QuestionStatus:
        if question.response_for(user_id) is not None:
            return QuestionStatus.ANSWERED
        if self.clock() >= question.deadline:
            return QuestionStatus.EXPIRED
        return QuestionStatus.PENDING

    def minutes_remaining(self, question: DailyQuestionRecord) -> int:
        remaining = question.deadline - self.clock()
        if remaining <= 0:
            return 0
        return int(math.ceil(remaining / 60))
