import unittest
from dataclasses import replace
from unittest import mock

from arch_backend.notifications import (
    EXPO_CHUNK_SIZE,
    ExpoPushClient,
    build_message,
    is_expo_push_token,
)
from arch_backend.records import Lifecycle
from arch_backend.tests.testing_utils import StoreTestCase, push_token


class PushTokenTests(unittest.TestCase):
    def test_expo_token_shapes(self):
        self.assertTrue(is_expo_push_token("ExponentPushToken[abc]"))
        self.assertTrue(is_expo_push_token("ExpoPushToken[abc]"))
        self.assertFalse(is_expo_push_token("abc"))
        self.assertFalse(is_expo_push_token(None))


class NotificationDispatcherTests(StoreTestCase):
    def setUp(self):
        super().setUp()
        self.alice = self.make_user("Alice")
        self.bob = self.make_user("Bob")

    def test_sends_to_registered_token(self):
        sent = self.notifier.send_to_user(
            self.alice.user_id, "Hi", "there", {"type": "posts", "archId": "a1"}
        )
        self.assertTrue(sent)
        (message,) = self.push.sent
        self.assertEqual(message["to"], push_token("Alice"))
        self.assertEqual(message["data"], {"type": "posts", "archId": "a1"})
        self.assertEqual(message["sound"], "default")

    def test_skips_users_without_usable_token(self):
        no_token = self.make_user("Carol", token=False)
        self.assertFalse(self.notifier.send_to_user(no_token.user_id, "Hi", "there"))
        self.db.update_user(self.bob.user_id, push_token="not-a-token")
        self.assertFalse(self.notifier.send_to_user(self.bob.user_id, "Hi", "there"))
        self.assertEqual(self.push.sent, [])
        # Malformed tokens are left in place.
        self.assertEqual(self.db.get_user(self.bob.user_id).push_token, "not-a-token")

    def test_skips_unknown_and_inactive_users(self):
        self.db.update_user(self.bob.user_id, lifecycle=Lifecycle.DELETED)
        self.assertFalse(self.notifier.send_to_user(self.bob.user_id, "Hi", "there"))
        self.assertFalse(self.notifier.send_to_user("nobody", "Hi", "there"))
        self.assertEqual(self.push.sent, [])

    def test_respects_notification_settings(self):
        settings = replace(self.alice.notification_settings, messages=False)
        self.db.update_user(self.alice.user_id, notification_settings=settings)
        self.assertFalse(
            self.notifier.send_to_user(self.alice.user_id, "Msg", "hi", {"type": "message"})
        )
        self.assertTrue(
            self.notifier.send_to_user(self.alice.user_id, "Post", "hi", {"type": "posts"})
        )

    def test_unregistered_device_clears_token(self):
        self.push.unregistered_tokens.add(push_token("Alice"))
        self.assertFalse(self.notifier.send_to_user(self.alice.user_id, "Hi", "there"))
        self.assertIsNone(self.db.get_user(self.alice.user_id).push_token)

    def test_provider_failure_is_not_raised(self):
        self.push.fail = True
        with self.assertLogs("arch_backend.notifications", level="ERROR"):
            self.assertFalse(self.notifier.send_to_user(self.alice.user_id, "Hi", "there"))

    def test_send_to_arch_excludes_sender(self):
        carol = self.make_user("Carol", token=False)
        arch = self.make_arch(self.alice, self.bob, carol)
        results = self.notifier.send_to_arch(
            arch.arch_id, "New", "post", exclude_user_id=self.alice.user_id
        )
        self.assertEqual(results, {self.bob.user_id: True, carol.user_id: False})
        self.assertEqual([m["to"] for m in self.push.sent], [push_token("Bob")])

    def test_send_to_unknown_arch(self):
        self.assertEqual(self.notifier.send_to_arch("missing", "t", "b"), {})


class ExpoPushClientTests(unittest.TestCase):
    def test_posts_in_chunks_with_auth_header(self):
        client = ExpoPushClient(url="https://push.test/send", access_token="secret")
        self.assertEqual(client._session.headers["Authorization"], "Bearer secret")

        response = mock.Mock()
        response.json.side_effect = lambda: {"data": [{"status": "ok"}]}
        messages = [
            build_message(f"ExponentPushToken[{i}]", "t", "b", None)
            for i in range(EXPO_CHUNK_SIZE + 1)
        ]
        with mock.patch.object(client._session, "post", return_value=response) as post:
            tickets = client.send(messages)

        self.assertEqual(post.call_count, 2)
        first_chunk = post.call_args_list[0].kwargs["json"]
        second_chunk = post.call_args_list[1].kwargs["json"]
        self.assertEqual(len(first_chunk), EXPO_CHUNK_SIZE)
        self.assertEqual(len(second_chunk), 1)
        self.assertEqual(len(tickets), 2)


if __name__ == "__main__":
    unittest.main()
