"""
Shared fixtures: a controllable clock, seeded stores and an app wired to them.
"""

from __future__ import annotations

import unittest
import uuid

from fastapi.testclient import TestClient

from arch_backend.app import create_app
from arch_backend.config import Settings, get_settings
from arch_backend.db import PostgresDbClient
from arch_backend.dependencies import (
    get_clock,
    get_db_client,
    get_event_bus,
    get_push_client,
    get_storage_client,
)
from arch_backend.notifications import InMemoryPushClient, NotificationDispatcher
from arch_backend.realtime import InMemoryEventBus
from arch_backend.storage import InMemoryStorageClient
from arch_backend.timeutils import at_local_time

TIMEZONE = "America/New_York"
TODAY = "2024-03-05"
# 10:00 local, well before the default 17:00 deadline.
MORNING = at_local_time(TIMEZONE, TODAY, "10:00")
DEADLINE = at_local_time(TIMEZONE, TODAY, "17:00")


class FakeClock:
    def __init__(self, now: float = MORNING):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def set(self, now: float) -> None:
        self.now = now


def push_token(name: str) -> str:
    return f"ExponentPushToken[{name}]"


class StoreTestCase(unittest.TestCase):
    """Fresh in-memory store, push double and clock per test."""

    def setUp(self):
        self.db = PostgresDbClient.in_memory()
        self.push = InMemoryPushClient()
        self.events = InMemoryEventBus()
        self.clock = FakeClock()
        self.notifier = NotificationDispatcher(self.db, self.push)

    def make_user(self, name: str, *, token: bool = True):
        user = self.db.create_user(
            name, f"{name.lower()}@example.com", "not-a-real-hash", now=self.clock()
        )
        if token:
            user = self.db.update_user(user.user_id, push_token=push_token(name))
        return user

    def make_arch(self, creator, *members, name: str = "Family"):
        arch = self.db.create_arch(
            name, creator.user_id, uuid.uuid4().hex[:8].upper(), now=self.clock()
        )
        for member in members:
            self.db.add_member(arch.arch_id, member.user_id, now=self.clock())
        return self.db.get_arch(arch.arch_id)


class ApiTestCase(StoreTestCase):
    """StoreTestCase plus a TestClient whose dependencies point at the test stores."""

    def setUp(self):
        super().setUp()
        self.storage = InMemoryStorageClient()
        self.settings = Settings(
            use_in_memory_backends=True, enable_manual_triggers=True
        )
        self.app = create_app()
        self.app.dependency_overrides[get_db_client] = lambda: self.db
        self.app.dependency_overrides[get_push_client] = lambda: self.push
        self.app.dependency_overrides[get_event_bus] = lambda: self.events
        self.app.dependency_overrides[get_storage_client] = lambda: self.storage
        self.app.dependency_overrides[get_clock] = lambda: self.clock
        self.app.dependency_overrides[get_settings] = lambda: self.settings
        self.client = TestClient(self.app)

    def register(self, name: str, *, with_push_token: bool = True) -> dict:
        response = self.client.post(
            "/api/auth/register",
            json={
                "name": name,
                "email": f"{name.lower()}@example.com",
                "password": "secret123",
            },
        )
        self.assertEqual(response.status_code, 201, response.text)
        payload = response.json()
        account = {
            "token": payload["token"],
            "id": payload["user"]["id"],
            "name": name,
            "headers": {"Authorization": f"Bearer {payload['token']}"},
        }
        if with_push_token:
            resp = self.client.post(
                "/api/auth/push-token",
                json={"token": push_token(name)},
                headers=account["headers"],
            )
            self.assertEqual(resp.status_code, 200, resp.text)
        return account

    def create_arch(self, owner: dict, name: str = "The Smiths") -> dict:
        response = self.client.post(
            "/api/arches", json={"name": name}, headers=owner["headers"]
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def join(self, account: dict, arch: dict) -> dict:
        response = self.client.post(
            "/api/arches/join",
            json={"inviteCode": arch["inviteCode"]},
            headers=account["headers"],
        )
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def family(self, *names: str) -> tuple[dict, list[dict]]:
        """Register the named users and put them all in one arch."""
        accounts = [self.register(name) for name in names]
        arch = self.create_arch(accounts[0])
        for account in accounts[1:]:
            self.join(account, arch)
        return arch, accounts
