import unittest

from arch_backend.db import PostgresDbClient
from arch_backend.records import (
    EventStatus,
    EventType,
    Lifecycle,
    MediaItem,
    MediaKind,
    MemberRole,
    RsvpStatus,
)


class PostgresDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    def setUp(self):
        self.db = PostgresDbClient("sqlite+pysqlite:///:memory:")
        self.alice = self.db.create_user("Alice", "Alice@Example.com", "hash", now=100)
        self.bob = self.db.create_user("Bob", "bob@example.com", "hash", now=100)
        self.arch = self.db.create_arch("Family", self.alice.user_id, "ABCD1234", now=100)
        self.db.add_member(self.arch.arch_id, self.bob.user_id, now=101)

    def test_user_email_is_normalized(self):
        self.assertEqual(self.alice.email, "alice@example.com")
        fetched = self.db.get_user_by_email(" ALICE@example.com ")
        self.assertEqual(fetched.user_id, self.alice.user_id)

    def test_creator_is_admin_and_membership_is_unique(self):
        arch = self.db.get_arch(self.arch.arch_id)
        roles = {m.user_id: m.role for m in arch.members}
        self.assertEqual(roles[self.alice.user_id], MemberRole.ADMIN)
        self.assertEqual(roles[self.bob.user_id], MemberRole.MEMBER)
        self.assertFalse(self.db.add_member(self.arch.arch_id, self.bob.user_id))
        self.assertEqual(len(self.db.get_arch(self.arch.arch_id).members), 2)

    def test_deleted_arch_is_hidden(self):
        self.db.update_arch(self.arch.arch_id, lifecycle=Lifecycle.DELETED)
        self.assertIsNone(self.db.get_arch(self.arch.arch_id))
        self.assertIsNone(self.db.get_arch_by_invite_code("ABCD1234"))
        self.assertEqual(self.db.list_arches_for_user(self.bob.user_id), [])
        self.assertIsNotNone(self.db.get_arch(self.arch.arch_id, include_deleted=True))

    def test_clear_push_token_only_matches_current_token(self):
        self.db.update_user(self.bob.user_id, push_token="ExponentPushToken[new]")
        self.assertFalse(self.db.clear_push_token(self.bob.user_id, "ExponentPushToken[old]"))
        self.assertTrue(self.db.clear_push_token(self.bob.user_id, "ExponentPushToken[new]"))
        self.assertIsNone(self.db.get_user(self.bob.user_id).push_token)

    def test_expired_sessions_are_deleted(self):
        self.db.create_session(self.alice.user_id, "old", expires_at=50)
        self.db.create_session(self.alice.user_id, "fresh", expires_at=500)
        self.assertEqual(self.db.delete_expired_sessions(now=100), 1)
        self.assertIsNone(self.db.get_session("old"))
        self.assertIsNotNone(self.db.get_session("fresh"))

    def test_one_response_per_user_and_question(self):
        question = self.db.create_question(
            self.arch.arch_id, "2024-03-05", self.bob.user_id, self.alice.user_id, "Q?", 1000
        )
        first = self.db.upsert_response(question.question_id, self.bob.user_id, "one", False)
        second = self.db.upsert_response(question.question_id, self.bob.user_id, "two", False)
        self.assertEqual(first.response_id, second.response_id)
        stored = self.db.get_question(question.question_id)
        self.assertEqual(len(stored.responses), 1)
        self.assertEqual(stored.responses[0].text, "two")

    def test_processing_and_sharing_flip_only_once(self):
        question = self.db.create_question(
            self.arch.arch_id, "2024-03-05", self.bob.user_id, self.alice.user_id, "Q?", 1000
        )
        response = self.db.upsert_response(
            question.question_id, self.bob.user_id, "kind words", False
        )
        self.assertTrue(self.db.mark_question_processed(question.question_id))
        self.assertFalse(self.db.mark_question_processed(question.question_id))
        self.assertTrue(self.db.set_response_shared(response.response_id))
        self.assertFalse(self.db.set_response_shared(response.response_id))

    def test_passed_response_cannot_be_shared(self):
        question = self.db.create_question(
            self.arch.arch_id, "2024-03-05", self.bob.user_id, self.alice.user_id, "Q?", 1000
        )
        response = self.db.upsert_response(question.question_id, self.bob.user_id, "", True)
        self.assertFalse(self.db.set_response_shared(response.response_id))

    def test_due_and_open_questions(self):
        due = self.db.create_question(
            self.arch.arch_id, "2024-03-05", self.bob.user_id, self.alice.user_id, "Q1", 100
        )
        later = self.db.create_question(
            self.arch.arch_id, "2024-03-05", self.alice.user_id, self.bob.user_id, "Q2", 300
        )
        self.assertEqual(
            [q.question_id for q in self.db.list_due_questions(now=200)], [due.question_id]
        )
        self.assertEqual(
            [q.question_id for q in self.db.list_open_questions(200, 400)],
            [later.question_id],
        )

    def test_likes_toggle(self):
        post = self.db.create_post(self.arch.arch_id, self.alice.user_id, "hello")
        self.assertTrue(self.db.toggle_like(post.post_id, self.bob.user_id))
        self.assertEqual(len(self.db.get_post(post.post_id).likes), 1)
        self.assertFalse(self.db.toggle_like(post.post_id, self.bob.user_id))
        self.assertEqual(self.db.get_post(post.post_id).likes, [])

    def test_post_media_and_soft_delete(self):
        media = [MediaItem(url="https://x/y.mp4", kind=MediaKind.VIDEO)]
        post = self.db.create_post(self.arch.arch_id, self.alice.user_id, "clip", media)
        self.assertEqual(self.db.get_post(post.post_id).media, media)
        self.db.set_post_lifecycle(post.post_id, Lifecycle.DELETED)
        self.assertIsNone(self.db.get_post(post.post_id))
        self.assertEqual(self.db.list_posts(self.arch.arch_id), [])
        self.assertEqual(self.db.count_posts(self.arch.arch_id), 0)

    def test_posts_newest_first_with_paging(self):
        for i in range(3):
            self.db.create_post(self.arch.arch_id, self.alice.user_id, f"p{i}", now=200 + i)
        page = self.db.list_posts(self.arch.arch_id, offset=1, limit=1)
        self.assertEqual([p.content for p in page], ["p1"])

    def test_get_together_invitees_and_rsvp(self):
        carol = self.db.create_user("Carol", "carol@example.com", "hash")
        gt = self.db.create_get_together(
            self.arch.arch_id,
            self.alice.user_id,
            "Picnic",
            EventType.IN_PERSON,
            5000,
            [self.bob.user_id, self.bob.user_id],
            location="Park",
        )
        self.assertEqual([i.user_id for i in gt.invitees], [self.bob.user_id])
        self.assertTrue(self.db.set_rsvp(gt.get_together_id, self.bob.user_id, RsvpStatus.ACCEPTED))
        self.assertFalse(self.db.set_rsvp(gt.get_together_id, carol.user_id, RsvpStatus.ACCEPTED))
        stored = self.db.get_get_together(gt.get_together_id)
        self.assertEqual(stored.invitee(self.bob.user_id).status, RsvpStatus.ACCEPTED)

    def test_complete_past_get_togethers(self):
        past = self.db.create_get_together(
            self.arch.arch_id, self.alice.user_id, "Old", EventType.VIRTUAL, 100, [],
            virtual_link="https://meet",
        )
        future = self.db.create_get_together(
            self.arch.arch_id, self.alice.user_id, "New", EventType.VIRTUAL, 10_000, [],
            virtual_link="https://meet",
        )
        self.assertEqual(self.db.complete_past_get_togethers(before=1000), 1)
        self.assertEqual(
            self.db.get_get_together(past.get_together_id).status, EventStatus.COMPLETED
        )
        self.assertEqual(
            self.db.get_get_together(future.get_together_id).status, EventStatus.PLANNING
        )

    def test_conversation_read_state(self):
        self.db.create_message(self.arch.arch_id, self.alice.user_id, self.bob.user_id, "hi", now=1)
        self.db.create_message(self.arch.arch_id, self.bob.user_id, self.alice.user_id, "hey", now=2)
        self.db.create_message(self.arch.arch_id, self.alice.user_id, self.bob.user_id, "news", now=3)
        conversation = self.db.list_conversation(
            self.arch.arch_id, self.bob.user_id, self.alice.user_id
        )
        self.assertEqual([m.content for m in conversation], ["news", "hey", "hi"])
        self.assertEqual(self.db.count_unread(self.arch.arch_id, self.bob.user_id), 2)
        self.assertEqual(
            self.db.mark_conversation_read(
                self.arch.arch_id, self.bob.user_id, self.alice.user_id, now=4
            ),
            2,
        )
        self.assertEqual(self.db.count_unread(self.arch.arch_id, self.bob.user_id), 0)

    def test_conversation_search_is_case_insensitive(self):
        self.db.create_message(self.arch.arch_id, self.alice.user_id, self.bob.user_id, "Dinner at 7")
        self.db.create_message(self.arch.arch_id, self.alice.user_id, self.bob.user_id, "ok")
        found = self.db.list_conversation(
            self.arch.arch_id, self.alice.user_id, self.bob.user_id, query="DINNER"
        )
        self.assertEqual([m.content for m in found], ["Dinner at 7"])


if __name__ == "__main__":
    unittest.main()
