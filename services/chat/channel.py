"""
services/chat/channel.py
Realtime chat channel between a booker and a talent for one event context.

The channel id is derived from the participants and the event type, so
both sides resolve the same channel without a lookup. Messages travel as
broadcast frames over Redis pub/sub and are never replayed: a session
that joins (or re-joins) only sees messages published after it subscribed.
"""

import re
import secrets
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from config.redis_client import RedisCache
from services.chat.filters import filter_sensitive_content

CHANNEL_PREFIX = "chat"

Publisher = Callable[[str, dict], Awaitable[None]]


def event_slug(event_type: str) -> str:
    return re.sub(r"\s+", "-", event_type.strip().lower())


def build_channel_id(booker_id, talent_id, event_type: str) -> str:
    return f"{CHANNEL_PREFIX}:{booker_id}:{talent_id}:{event_slug(event_type)}"


def parse_channel_id(channel_id: str) -> tuple[str, str, str]:
    """Return (booker_id, talent_id, slug). Raises ValueError if malformed."""
    parts = channel_id.split(":", 3)
    if len(parts) != 4 or parts[0] != CHANNEL_PREFIX or not all(parts[1:]):
        raise ValueError(f"Invalid chat channel id: {channel_id!r}")
    return parts[1], parts[2], parts[3]


def new_message_id() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def broadcast_frame(payload: dict) -> dict:
    return {"type": "broadcast", "event": "message", "payload": payload}


def redis_publisher(redis) -> Publisher:
    cache = RedisCache(redis)

    async def publish(channel_id: str, frame: dict) -> None:
        await cache.publish_json(channel_id, frame)

    return publish


class ChatSession:
    """
    One participant's view of a channel: ordered local history, deduplicated
    by message id. Switching or clearing the channel discards the history.
    """

    def __init__(self, user_id: str, publish: Publisher):
        self.user_id = str(user_id)
        self.channel_id: Optional[str] = None
        self.messages: list[dict] = []
        self._seen: set[str] = set()
        self._publish = publish

    def join(self, channel_id: str) -> None:
        if channel_id != self.channel_id:
            self.clear()
            self.channel_id = channel_id

    def clear(self) -> None:
        self.channel_id = None
        self.messages = []
        self._seen = set()

    def _append(self, message: dict) -> bool:
        message_id = message.get("id")
        if not message_id or message_id in self._seen:
            return False
        self._seen.add(message_id)
        self.messages.append(message)
        return True

    async def send(self, text: str) -> Optional[dict]:
        """Redact, append locally, then broadcast. None if nothing to send."""
        if self.channel_id is None:
            raise RuntimeError("Join a channel before sending")
        content = filter_sensitive_content(text)
        if not content:
            return None
        message = {
            "id": new_message_id(),
            "content": content,
            "senderId": self.user_id,
            "createdAt": datetime.now(timezone.utc).isoformat(),
        }
        self._append(message)
        await self._publish(self.channel_id, broadcast_frame(message))
        return message

    def receive(self, frame: dict) -> Optional[dict]:
        """Accept an incoming broadcast frame. Returns the message if it is new."""
        if frame.get("type") != "broadcast" or frame.get("event") != "message":
            return None
        payload = frame.get("payload")
        if not isinstance(payload, dict) or not isinstance(payload.get("content"), str):
            return None
        message = {**payload, "content": filter_sensitive_content(payload["content"])}
        return message if self._append(message) else None
