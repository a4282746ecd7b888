"""
Arch-scoped real-time events.

Handlers publish events on a per-arch channel; WebSocket connections subscribe
to the channels of arches the user belongs to. Redis pub/sub carries events
between processes in production, an in-memory bus serves tests and local runs.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional, Protocol

import redis
import redis.asyncio as redis_asyncio
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)


class EventBus(Protocol):
    def publish(self, arch_id: str, event: str, payload: dict) -> None:
        ...

    def subscribe(self, arch_id: str) -> AsyncIterator[dict]:
        ...


def _envelope(arch_id: str, event: str, payload: dict) -> dict:
    return {"event": event, "archId": arch_id, "data": payload}


@dataclass
class InMemoryEventBus:
    """Process-local bus; records everything published."""

    published: list[dict] = field(default_factory=list)

    def __post_init__(self):
        self._lock = threading.Lock()
        self._subscribers: dict[
            str, list[tuple[asyncio.AbstractEventLoop, asyncio.Queue]]
        ] = {}

    def publish(self, arch_id: str, event: str, payload: dict) -> None:
        message = _envelope(arch_id, event, payload)
        with self._lock:
            self.published.append(message)
            subscribers = list(self._subscribers.get(arch_id, []))
        for loop, queue in subscribers:
            loop.call_soon_threadsafe(queue.put_nowait, message)

    def events(self, arch_id: Optional[str] = None) -> list[str]:
        return [
            message["event"]
            for message in self.published
            if arch_id is None or message["archId"] == arch_id
        ]

    async def subscribe(self, arch_id: str) -> AsyncIterator[dict]:
        queue: asyncio.Queue = asyncio.Queue()
        entry = (asyncio.get_running_loop(), queue)
        with self._lock:
            self._subscribers.setdefault(arch_id, []).append(entry)
        try:
            while True:
                yield await queue.get()
        finally:
            with self._lock:
                self._subscribers[arch_id].remove(entry)


@dataclass
class RedisEventBus:
    """Publishes JSON envelopes to `<channel_prefix>:<arch_id>`."""

    url: str
    channel_prefix: str = "arch:events"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def channel(self, arch_id: str) -> str:
        return f"{self.channel_prefix}:{arch_id}"

    def publish(self, arch_id: str, event: str, payload: dict) -> None:
        message = json.dumps(_envelope(arch_id, event, payload), default=str)
        try:
            self.client.publish(self.channel(arch_id), message)
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections; reconnect once and retry.
            self.client = redis.Redis.from_url(self.url)
            self.client.publish(self.channel(arch_id), message)

    async def subscribe(self, arch_id: str) -> AsyncIterator[dict]:
        client = redis_asyncio.Redis.from_url(self.url)
        pubsub = client.pubsub()
        await pubsub.subscribe(self.channel(arch_id))
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                yield json.loads(message["data"])
        finally:
            await pubsub.unsubscribe(self.channel(arch_id))
            await pubsub.aclose()
            await client.aclose()


def broadcast(bus: EventBus, arch_id: str, event: str, payload: dict) -> None:
    """Publish an event; failures are logged and never reach the caller."""
    try:
        bus.publish(arch_id, event, payload)
    except Exception:
        logger.exception("Failed to broadcast %s to arch %s", event, arch_id)
