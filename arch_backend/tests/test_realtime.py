import asyncio
import unittest
from unittest import mock

from fastapi import WebSocketDisconnect

from arch_backend.realtime import InMemoryEventBus, RedisEventBus, broadcast
from arch_backend.routes.ws import arch_events
from arch_backend.tests.testing_utils import StoreTestCase


class InMemoryEventBusTests(unittest.TestCase):
    def test_subscriber_receives_events_for_its_arch_only(self):
        bus = InMemoryEventBus()

        async def scenario():
            stream = bus.subscribe("arch1")
            pending = asyncio.ensure_future(stream.__anext__())
            await asyncio.sleep(0)
            bus.publish("arch2", "new-post", {"id": "other"})
            bus.publish("arch1", "new-post", {"id": "mine"})
            message = await asyncio.wait_for(pending, timeout=1)
            await stream.aclose()
            return message

        message = asyncio.run(scenario())
        self.assertEqual(
            message, {"event": "new-post", "archId": "arch1", "data": {"id": "mine"}}
        )
        self.assertEqual(bus.events(), ["new-post", "new-post"])
        self.assertEqual(bus.events("arch1"), ["new-post"])

    def test_broadcast_swallows_publish_errors(self):
        bus = mock.Mock()
        bus.publish.side_effect = RuntimeError("down")
        with self.assertLogs("arch_backend.realtime", level="ERROR"):
            broadcast(bus, "arch1", "new-post", {})


class RedisEventBusTests(unittest.TestCase):
    def test_publishes_json_envelope_to_arch_channel(self):
        with mock.patch("arch_backend.realtime.redis.Redis.from_url") as from_url:
            bus = RedisEventBus(url="redis://localhost:6379/0", channel_prefix="arch:test")
            bus.publish("arch1", "new-message", {"id": "m1"})

        channel, body = from_url.return_value.publish.call_args.args
        self.assertEqual(channel, "arch:test:arch1")
        self.assertIn('"event": "new-message"', body)
        self.assertIn('"archId": "arch1"', body)


class ScriptedSocket:
    """WebSocket stand-in whose event sends fail and whose reads end once they do."""

    def __init__(self, send_error: Exception):
        self.send_error = send_error
        self.sent = []
        self.close_code = None
        self.gone = asyncio.Event()

    async def accept(self):
        pass

    async def close(self, code=None):
        self.close_code = code

    async def send_json(self, message):
        if message["event"] != "connected":
            self.gone.set()
            raise self.send_error
        self.sent.append(message)

    async def receive_text(self):
        await self.gone.wait()
        raise WebSocketDisconnect(1000)


class ArchEventStreamTests(StoreTestCase):
    def setUp(self):
        super().setUp()
        self.alice = self.make_user("Alice")
        self.arch = self.make_arch(self.alice)
        self.db.create_session(self.alice.user_id, "alice-token", self.clock() + 3600)

    def _stream_until_send_fails(self, send_error):
        async def scenario():
            socket = ScriptedSocket(send_error)
            handler = asyncio.ensure_future(
                arch_events(
                    socket,
                    self.arch.arch_id,
                    token="alice-token",
                    db=self.db,
                    events=self.events,
                    clock=self.clock,
                )
            )
            for _ in range(5):
                await asyncio.sleep(0)
            self.events.publish(self.arch.arch_id, "new-post", {"id": "p1"})
            await asyncio.wait_for(handler, timeout=1)
            return socket

        return asyncio.run(scenario())

    def test_disconnect_during_send_ends_stream_cleanly(self):
        socket = self._stream_until_send_fails(WebSocketDisconnect(1001))
        self.assertEqual([m["event"] for m in socket.sent], ["connected"])
        self.assertIsNone(socket.close_code)

    def test_unexpected_send_failure_is_logged(self):
        with self.assertLogs("arch_backend.routes.ws", level="ERROR"):
            self._stream_until_send_fails(RuntimeError("socket broken"))


if __name__ == "__main__":
    unittest.main()
