import unittest

from arch_backend.feed import POST_ITEM, RESPONSE_ITEM, build_feed
from arch_backend.tests.testing_utils import MORNING, TODAY, StoreTestCase
from arch_backend.timeutils import days_before


class FeedTests(StoreTestCase):
    def setUp(self):
        super().setUp()
        self.alice = self.make_user("Alice")
        self.bob = self.make_user("Bob")
        self.arch = self.make_arch(self.alice, self.bob)

    def _shared_response(self, question_date, submitted_at, *, passed=False, share=True):
        question = self.db.create_question(
            self.arch.arch_id,
            question_date,
            self.bob.user_id,
            self.alice.user_id,
            "What makes Alice great?",
            MORNING + 3600,
        )
        response = self.db.upsert_response(
            question.question_id,
            self.bob.user_id,
            "" if passed else "Everything",
            passed,
            now=submitted_at,
        )
        if share:
            self.db.set_response_shared(response.response_id)
        return question, response

    def test_merges_posts_and_shared_responses_newest_first(self):
        self.db.create_post(self.arch.arch_id, self.alice.user_id, "old post", now=MORNING - 100)
        newest = self.db.create_post(
            self.arch.arch_id, self.bob.user_id, "new post", now=MORNING + 100
        )
        question, response = self._shared_response(TODAY, MORNING)

        page = build_feed(self.db, self.arch, self.alice.user_id, 1, 20, MORNING + 200)

        self.assertEqual(
            [item.kind for item in page.items], [POST_ITEM, RESPONSE_ITEM, POST_ITEM]
        )
        self.assertEqual(page.items[0].post.post_id, newest.post_id)
        self.assertEqual(
            page.items[1].item_id,
            f"response_{question.question_id}_{response.response_id}",
        )
        self.assertFalse(page.has_more)
        self.assertEqual(page.current_page, 1)

    def test_only_todays_shared_non_passed_responses(self):
        self._shared_response(days_before(TODAY, 1), MORNING - 86400)
        self._shared_response(TODAY, MORNING, share=False)
        page = build_feed(self.db, self.arch, self.alice.user_id, 1, 20, MORNING + 60)
        self.assertEqual(page.items, [])

    def test_limit_truncates_and_has_more_follows_posts(self):
        for i in range(3):
            self.db.create_post(self.arch.arch_id, self.alice.user_id, f"p{i}", now=MORNING + i)
        self._shared_response(TODAY, MORNING + 10)

        first = build_feed(self.db, self.arch, self.alice.user_id, 1, 2, MORNING + 60)
        self.assertEqual(len(first.items), 2)
        self.assertTrue(first.has_more)
        self.assertEqual(first.items[0].kind, RESPONSE_ITEM)

        second = build_feed(self.db, self.arch, self.alice.user_id, 2, 2, MORNING + 60)
        self.assertFalse(second.has_more)
        self.assertEqual(
            [i.post.content for i in second.items if i.kind == POST_ITEM], ["p0"]
        )

    def test_post_items_carry_engagement(self):
        post = self.db.create_post(self.arch.arch_id, self.alice.user_id, "hi", now=MORNING)
        self.db.toggle_like(post.post_id, self.bob.user_id)
        self.db.add_comment(post.post_id, self.bob.user_id, "nice")
        self.db.add_comment(post.post_id, self.alice.user_id, "thanks")

        (item,) = build_feed(self.db, self.arch, self.bob.user_id, 1, 20, MORNING).items
        self.assertTrue(item.user_has_liked)
        self.assertEqual(item.engagement_score, 3)

        (item,) = build_feed(self.db, self.arch, self.alice.user_id, 1, 20, MORNING).items
        self.assertFalse(item.user_has_liked)


if __name__ == "__main__":
    unittest.main()
