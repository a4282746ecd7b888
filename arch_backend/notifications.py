"""
Push notifications through the Expo push service, with an in-memory double.

The dispatcher looks up the recipient, honours their notification settings,
and treats every delivery problem as a logged, non-fatal outcome.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Protocol

import requests

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30  # seconds
EXPO_CHUNK_SIZE = 100
DEVICE_NOT_REGISTERED = "DeviceNotRegistered"

_EXPO_TOKEN = re.compile(r"^(ExponentPushToken|ExpoPushToken)\[[^\]]+\]$")

# data["type"] -> NotificationSettings attribute that gates it.
NOTIFICATION_SETTING_BY_TYPE = {
    "daily_question": "daily_questions",
    "response_shared": "responses",
    "posts": "posts",
    "new_post": "posts",
    "comment": "posts",
    "like": "posts",
    "event": "get_togethers",
    "event_created": "get_togethers",
    "event_updated": "get_togethers",
    "event_cancelled": "get_togethers",
    "event_reminder": "get_togethers",
    "event_rsvp": "get_togethers",
    "get_together": "get_togethers",
    "message": "messages",
    "messages": "messages",
}


def is_expo_push_token(token: Optional[str]) -> bool:
    return bool(token) and bool(_EXPO_TOKEN.match(token))


def build_message(token: str, title: str, body: str, data: Optional[dict]) -> dict:
    return {
        "to": token,
        "sound": "default",
        "title": title,
        "body": body,
        "data": data or {},
        "priority": "high",
        "channelId": "default",
    }


class PushClient(Protocol):
    """Sends push messages and returns one ticket per message."""

    def send(self, messages: list[dict]) -> list[dict]:
        ...


@dataclass
class ExpoPushClient:
    url: str = "https://exp.host/--/api/v2/push/send"
    access_token: Optional[str] = None

    def __post_init__(self):
        self._session = requests.Session()
        self._session.headers.update(
            {"Accept": "application/json", "Content-Type": "application/json"}
        )
        if self.access_token:
            self._session.headers["Authorization"] = f"Bearer {self.access_token}"

    def send(self, messages: list[dict]) -> list[dict]:
        tickets: list[dict] = []
        for start in range(0, len(messages), EXPO_CHUNK_SIZE):
            chunk = messages[start : start + EXPO_CHUNK_SIZE]
            response = self._session.post(self.url, json=chunk, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            tickets.extend(response.json().get("data", []))
        return tickets


@dataclass
class InMemoryPushClient:
    """Records messages instead of sending them."""

    sent: list[dict] = field(default_factory=list)
    unregistered_tokens: set[str] = field(default_factory=set)
    fail: bool = False

    def send(self, messages: list[dict]) -> list[dict]:
        if self.fail:
            raise requests.ConnectionError("push provider unavailable")
        tickets = []
        for message in messages:
            self.sent.append(message)
            if message["to"] in self.unregistered_tokens:
                tickets.append(
                    {
                        "status": "error",
                        "message": f"{message['to']} is not a registered push token",
                        "details": {"error": DEVICE_NOT_REGISTERED},
                    }
                )
            else:
                tickets.append({"status": "ok", "id": f"ticket-{len(self.sent)}"})
        return tickets

    def sent_to(self, token: str) -> list[dict]:
        return [message for message in self.sent if message["to"] == token]


class NotificationDispatcher:
    """Delivers best-effort notifications to users and whole arches."""

    def __init__(self, db, push_client: PushClient):
        self.db = db
        self.push_client = push_client

    def send_to_user(
        self,
        user_id: str,
        title: str,
        body: str,
        data: Optional[dict] = None,
    ) -> bool:
        data = data or {}
        user = self.db.get_user(user_id)
        if user is None or not user.is_active:
            logger.info("Skipping notification for unknown user %s", user_id)
            return False
        token = user.push_token
        if not token:
            logger.debug("No push token for user %s", user_id)
            return False
        if not is_expo_push_token(token):
            logger.warning("Invalid push token stored for user %s", user_id)
            return False
        setting = NOTIFICATION_SETTING_BY_TYPE.get(data.get("type", ""))
        if setting and not getattr(user.notification_settings, setting, True):
            logger.debug("User %s disabled %s notifications", user_id, setting)
            return False

        try:
            tickets = self.push_client.send([build_message(token, title, body, data)])
        except Exception:
            logger.exception("Push delivery failed for user %s", user_id)
            return False

        ticket = tickets[0] if tickets else {}
        if ticket.get("status") == "error":
            error = (ticket.get("details") or {}).get("error")
            logger.warning(
                "Push ticket error for user %s: %s", user_id, ticket.get("message")
            )
            if error == DEVICE_NOT_REGISTERED:
                self.db.clear_push_token(user_id, token)
                logger.info("Cleared unregistered push token for user %s", user_id)
            return False
        return True

    def send_to_arch(
        self,
        arch_id: str,
        title: str,
        body: str,
        *,
        exclude_user_id: Optional[str] = None,
        data: Optional[dict] = None,
    ) -> dict[str, bool]:
        """Notify every current member independently; returns per-user outcome."""
        arch = self.db.get_arch(arch_id)
        if arch is None:
            logger.info("Skipping arch notification for unknown arch %s", arch_id)
            return {}
        results: dict[str, bool] = {}
        for user_id in arch.member_ids:
            if user_id == exclude_user_id:
                continue
            results[user_id] = self.send_to_user(user_id, title, body, data)
        return results
