import random
import unittest

from arch_backend.errors import Forbidden, NotFound, StateConflict, ValidationFailed
from arch_backend.lifecycle import DailyQuestionLifecycle
from arch_backend.records import Lifecycle, QuestionStatus
from arch_backend.tests.testing_utils import DEADLINE, TODAY, StoreTestCase, push_token


class DailyQuestionLifecycleTests(StoreTestCase):
    def setUp(self):
        super().setUp()
        self.alice = self.make_user("Alice")
        self.bob = self.make_user("Bob")
        self.carol = self.make_user("Carol")
        self.arch = self.make_arch(self.alice, self.bob, self.carol)
        self.lifecycle = DailyQuestionLifecycle(
            self.db,
            self.notifier,
            clock=self.clock,
            rng=random.Random(7),
            events=self.events,
        )

    def _question_for(self, asker):
        self.lifecycle.create_daily_questions()
        (question,) = self.db.list_questions(arch_id=self.arch.arch_id, asker_id=asker.user_id)
        return question

    def test_creates_one_question_per_member_about_someone_else(self):
        created = self.lifecycle.create_daily_questions()
        self.assertEqual(created, 3)
        questions = self.db.list_questions(arch_id=self.arch.arch_id)
        self.assertEqual(
            sorted(q.asker_id for q in questions),
            sorted(self.arch.member_ids),
        )
        for question in questions:
            self.assertNotEqual(question.asker_id, question.about_user_id)
            self.assertEqual(question.question_date, TODAY)
            self.assertEqual(question.deadline, DEADLINE)
            self.assertFalse(question.processed)
            about = self.db.get_user(question.about_user_id)
            self.assertIn(about.name, question.question)
            self.assertNotIn("{name}", question.question)

    def test_creation_is_idempotent_per_day(self):
        self.assertEqual(self.lifecycle.create_daily_questions(), 3)
        self.assertEqual(self.lifecycle.create_daily_questions(), 0)
        self.assertEqual(len(self.db.list_questions(arch_id=self.arch.arch_id)), 3)

    def test_creation_notifies_each_asker(self):
        self.lifecycle.create_daily_questions()
        message = self.push.sent_to(push_token("Bob"))[0]
        self.assertEqual(message["title"], "🌅 Good morning!")
        self.assertTrue(message["body"].startswith("New question about "))
        self.assertEqual(message["data"]["type"], "daily_question")

    def test_arch_needs_two_active_members(self):
        solo_owner = self.make_user("Dave")
        solo = self.make_arch(solo_owner, name="Solo")
        self.db.update_user(self.bob.user_id, lifecycle=Lifecycle.DELETED)
        self.db.update_user(self.carol.user_id, lifecycle=Lifecycle.DELETED)
        self.assertEqual(self.lifecycle.create_daily_questions(), 0)
        self.assertFalse(self.db.has_questions_for_date(solo.arch_id, TODAY))
        self.assertFalse(self.db.has_questions_for_date(self.arch.arch_id, TODAY))

    def test_one_failing_arch_does_not_stop_others(self):
        original = self.db.has_questions_for_date

        def flaky(arch_id, question_date):
            if arch_id == self.arch.arch_id:
                raise RuntimeError("boom")
            return original(arch_id, question_date)

        other = self.make_arch(self.bob, self.carol, name="Cousins")
        self.db.has_questions_for_date = flaky
        with self.assertLogs("arch_backend.lifecycle", level="ERROR"):
            created = self.lifecycle.create_daily_questions()
        self.assertEqual(created, 2)
        self.assertTrue(original(other.arch_id, TODAY))

    def test_respond_stores_trimmed_text_and_publishes(self):
        question = self._question_for(self.bob)
        _, response = self.lifecycle.respond(question.question_id, self.bob.user_id, "  lovely  ")
        self.assertEqual(response.text, "lovely")
        self.assertFalse(response.passed)
        self.assertIn("question-response", self.events.events(self.arch.arch_id))

    def test_second_response_replaces_first(self):
        question = self._question_for(self.bob)
        self.lifecycle.respond(question.question_id, self.bob.user_id, "first")
        updated, _ = self.lifecycle.respond(question.question_id, self.bob.user_id, "second")
        self.assertEqual([r.text for r in updated.responses], ["second"])

    def test_only_the_asker_may_respond(self):
        question = self._question_for(self.bob)
        with self.assertRaises(Forbidden):
            self.lifecycle.respond(question.question_id, self.carol.user_id, "hi")

    def test_unknown_question(self):
        with self.assertRaises(NotFound):
            self.lifecycle.respond("missing", self.bob.user_id, "hi")

    def test_empty_response_rejected_but_pass_allowed(self):
        question = self._question_for(self.bob)
        with self.assertRaises(ValidationFailed):
            self.lifecycle.respond(question.question_id, self.bob.user_id, "   ")
        _, response = self.lifecycle.pass_question(question.question_id, self.bob.user_id)
        self.assertTrue(response.passed)
        self.assertEqual(response.text, "")

    def test_no_response_after_deadline(self):
        question = self._question_for(self.bob)
        self.clock.set(DEADLINE + 1)
        with self.assertRaises(StateConflict) as ctx:
            self.lifecycle.respond(question.question_id, self.bob.user_id, "late")
        self.assertEqual(ctx.exception.message, "Response deadline has passed")

    def test_processing_waits_for_deadline_and_runs_once(self):
        question = self._question_for(self.bob)
        self.lifecycle.respond(question.question_id, self.bob.user_id, "so kind")
        self.assertEqual(self.lifecycle.process_due_questions(), 0)

        self.clock.set(DEADLINE + 60)
        self.assertEqual(self.lifecycle.process_due_questions(), 3)
        self.assertEqual(self.lifecycle.process_due_questions(), 0)
        self.assertTrue(self.db.get_question(question.question_id).processed)

        about = self.db.get_user(question.about_user_id)
        shared = [
            m
            for m in self.push.sent_to(push_token(about.name))
            if m["data"].get("type") == "response_shared"
        ]
        self.assertEqual(len(shared), 1)
        self.assertEqual(shared[0]["body"], "1 family member shared something about you")

    def test_processing_skips_notification_for_passed_only(self):
        question = self._question_for(self.bob)
        self.lifecycle.pass_question(question.question_id, self.bob.user_id)
        self.clock.set(DEADLINE + 60)
        self.lifecycle.process_due_questions()
        types = [m["data"].get("type") for m in self.push.sent]
        self.assertNotIn("response_shared", types)

    def test_reminders_go_to_askers_without_response(self):
        question = self._question_for(self.bob)
        self.lifecycle.respond(question.question_id, self.bob.user_id, "done")
        self.clock.set(DEADLINE - 30 * 60)
        reminded = self.lifecycle.send_reminders(window_seconds=60 * 60)
        self.assertEqual(reminded, 2)
        reminders = [m for m in self.push.sent if m["title"] == "⏰ Don't forget!"]
        self.assertNotIn(push_token("Bob"), [m["to"] for m in reminders])
        self.assertTrue(all("closes in 30 minutes" in m["body"] for m in reminders))

    def test_share_rules(self):
        question = self._question_for(self.bob)
        _, response = self.lifecycle.respond(question.question_id, self.bob.user_id, "proud")

        with self.assertRaises(Forbidden):
            self.lifecycle.share_response(response.response_id, self.bob.user_id)

        _, shared = self.lifecycle.share_response(
            response.response_id, question.about_user_id
        )
        self.assertTrue(shared.shared_with_arch)
        self.assertIn("response-shared", self.events.events())

        with self.assertRaises(StateConflict):
            self.lifecycle.share_response(response.response_id, question.about_user_id)

    def test_former_member_cannot_share(self):
        question = self._question_for(self.bob)
        _, response = self.lifecycle.respond(question.question_id, self.bob.user_id, "proud")
        self.db.remove_member(self.arch.arch_id, question.about_user_id)
        with self.assertRaises(Forbidden):
            self.lifecycle.share_response(response.response_id, question.about_user_id)
        self.assertFalse(self.db.get_response(response.response_id).shared_with_arch)
        self.assertNotIn("response-shared", self.events.events())

    def test_cannot_share_into_deleted_arch(self):
        question = self._question_for(self.bob)
        _, response = self.lifecycle.respond(question.question_id, self.bob.user_id, "proud")
        self.db.update_arch(self.arch.arch_id, lifecycle=Lifecycle.DELETED)
        with self.assertRaises(Forbidden):
            self.lifecycle.share_response(response.response_id, question.about_user_id)
        self.assertFalse(self.db.get_response(response.response_id).shared_with_arch)
        self.assertNotIn("response-shared", self.events.events())

    def test_response_at_deadline_is_rejected_once_due(self):
        question = self._question_for(self.bob)
        self.clock.set(DEADLINE)
        with self.assertRaises(StateConflict):
            self.lifecycle.respond(question.question_id, self.bob.user_id, "just in time")
        self.assertEqual(
            self.lifecycle.question_status(question, self.bob.user_id), QuestionStatus.EXPIRED
        )
        self.assertEqual(self.lifecycle.process_due_questions(), 3)

    def test_passed_response_cannot_be_shared(self):
        question = self._question_for(self.bob)
        _, response = self.lifecycle.pass_question(question.question_id, self.bob.user_id)
        with self.assertRaises(StateConflict) as ctx:
            self.lifecycle.share_response(response.response_id, question.about_user_id)
        self.assertEqual(ctx.exception.message, "Cannot share a passed response")

    def test_delete_response(self):
        question = self._question_for(self.bob)
        self.lifecycle.respond(question.question_id, self.bob.user_id, "oops")
        self.lifecycle.delete_response(question.question_id, self.bob.user_id)
        self.assertEqual(self.db.get_question(question.question_id).responses, [])
        with self.assertRaises(NotFound):
            self.lifecycle.delete_response(question.question_id, self.bob.user_id)

    def test_status_and_minutes_remaining(self):
        question = self._question_for(self.bob)
        self.assertEqual(
            self.lifecycle.question_status(question, self.bob.user_id), QuestionStatus.PENDING
        )
        self.assertEqual(self.lifecycle.minutes_remaining(question), 7 * 60)
        self.clock.set(DEADLINE + 1)
        self.assertEqual(
            self.lifecycle.question_status(question, self.bob.user_id), QuestionStatus.EXPIRED
        )
        self.assertEqual(self.lifecycle.minutes_remaining(question), 0)


if __name__ == "__main__":
    unittest.main()
