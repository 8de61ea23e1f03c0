"""
tests/test_chat.py
Chat redaction, channel ids, session history and the persisted
booking message endpoints.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.chat.channel import ChatSession, broadcast_frame, build_channel_id, parse_channel_id
from services.chat.filters import contains_sensitive_content, filter_sensitive_content
from shared.models.models import Booking, ChatMessage, Notification, NotificationType, TalentProfile, User
from tests.conftest import auth_headers


# ── Redaction ──────────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "text, expected",
    [
        ("call me at 555-123-4567", "call me at [PHONE REMOVED]"),
        ("or (555) 123-4567 after six", "or [PHONE REMOVED] after six"),
        ("see https://example.com/rates", "see [LINK REMOVED]"),
        ("visit www.mysite.org today", "visit [LINK REMOVED] today"),
        ("book via mybandsite.io", "book via [LINK REMOVED]"),
        ("mail jane.doe@example.de", "mail [EMAIL REMOVED]"),
        ("DM me @jazzcat", "DM me [SOCIAL HANDLE REMOVED]"),
        ("See you at the venue at 7pm!", "See you at the venue at 7pm!"),
    ],
)
def test_filter_sensitive_content(text, expected):
    assert filter_sensitive_content(text) == expected


def test_filtering_is_idempotent():
    text = "ring 555.123.4567, mail a@b.de, follow @me, www.x.com"
    once = filter_sensitive_content(text)
    assert filter_sensitive_content(once) == once
    assert not contains_sensitive_content(once)


def test_filter_trims_whitespace():
    assert filter_sensitive_content("   hello   ") == "hello"


# ── Channel ids ────────────────────────────────────────────────────────────────

def test_channel_id_is_deterministic():
    first = build_channel_id("b-1", "t-1", "Wedding Reception")
    assert first == build_channel_id("b-1", "t-1", "  wedding   reception ")
    assert first == "chat:b-1:t-1:wedding-reception"
    assert parse_channel_id(first) == ("b-1", "t-1", "wedding-reception")


@pytest.mark.parametrize("channel_id", ["chat:b-1:t-1", "room:b:t:x", "chat::t:x"])
def test_parse_channel_id_rejects_malformed(channel_id):
    with pytest.raises(ValueError):
        parse_channel_id(channel_id)


# ── Session ────────────────────────────────────────────────────────────────────

class Recorder:
    def __init__(self):
        self.sent = []

    async def __call__(self, channel_id, frame):
        self.sent.append((channel_id, frame))


@pytest.mark.asyncio
async def test_send_redacts_and_publishes():
    publish = Recorder()
    session = ChatSession("u-1", publish)
    session.join("chat:b:t:gala")

    message = await session.send("text me 555-123-4567")
    assert message["content"] == "text me [PHONE REMOVED]"
    assert message["senderId"] == "u-1"
    assert publish.sent == [("chat:b:t:gala", broadcast_frame(message))]
    assert session.messages == [message]


@pytest.mark.asyncio
async def test_send_without_channel_fails():
    session = ChatSession("u-1", Recorder())
    with pytest.raises(RuntimeError):
        await session.send("hello")


@pytest.mark.asyncio
async def test_blank_message_not_sent():
    publish = Recorder()
    session = ChatSession("u-1", publish)
    session.join("chat:b:t:gala")
    assert await session.send("    ") is None
    assert publish.sent == []


@pytest.mark.asyncio
async def test_own_echo_is_deduplicated():
    session = ChatSession("u-1", Recorder())
    session.join("chat:b:t:gala")
    message = await session.send("hello")
    assert session.receive(broadcast_frame(message)) is None
    assert len(session.messages) == 1


def test_receive_redacts_and_ignores_other_frames():
    session = ChatSession("u-2", Recorder())
    session.join("chat:b:t:gala")
    incoming = broadcast_frame({"id": "m-1", "content": "ping @someone", "senderId": "u-1"})
    assert session.receive(incoming)["content"] == "ping [SOCIAL HANDLE REMOVED]"
    assert session.receive({"type": "presence", "payload": {}}) is None
    assert session.receive(broadcast_frame({"id": "m-2"})) is None


def test_switching_channel_clears_history():
    session = ChatSession("u-2", Recorder())
    session.join("chat:b:t:gala")
    session.receive(broadcast_frame({"id": "m-1", "content": "hi"}))
    session.join("chat:b:t:gala")
    assert len(session.messages) == 1
    session.join("chat:b:t:party")
    assert session.messages == []


# ── Booking messages ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_post_message_stores_redacted_and_notifies(
    client: AsyncClient,
    db: AsyncSession,
    booker: User,
    talent_user: User,
    booking: Booking,
):
    response = await client.post(
        f"/chat/bookings/{booking.id}/messages",
        headers=auth_headers(booker),
        json={"content": "My number is 555-123-4567"},
    )
    assert response.status_code == 201
    assert response.json()["content"] == "My number is [PHONE REMOVED]"

    stored = await db.scalar(select(ChatMessage).where(ChatMessage.booking_id == booking.id))
    assert stored.content == "My number is [PHONE REMOVED]"

    notification = await db.scalar(select(Notification).where(Notification.user_id == talent_user.id))
    assert notification.type == NotificationType.NEW_MESSAGE.value
    assert notification.message == "Bea Booker sent you a message about the Wedding event."


@pytest.mark.asyncio
async def test_list_messages_for_participants_only(
    client: AsyncClient,
    booker: User,
    other_booker: User,
    talent_user: User,
    booking: Booking,
):
    await client.post(
        f"/chat/bookings/{booking.id}/messages",
        headers=auth_headers(talent_user),
        json={"content": "Looking forward to it"},
    )
    response = await client.get(f"/chat/bookings/{booking.id}/messages", headers=auth_headers(booker))
    assert [m["content"] for m in response.json()] == ["Looking forward to it"]

    response = await client.get(f"/chat/bookings/{booking.id}/messages", headers=auth_headers(other_booker))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_booking_channel_id(
    client: AsyncClient,
    booker: User,
    talent_profile: TalentProfile,
    booking: Booking,
):
    response = await client.get(f"/chat/bookings/{booking.id}/channel", headers=auth_headers(booker))
    assert response.json()["channel_id"] == f"chat:{booker.id}:{talent_profile.id}:wedding"


@pytest.mark.asyncio
async def test_message_for_unknown_booking(client: AsyncClient, booker: User):
    response = await client.post(
        f"/chat/bookings/{uuid.uuid4()}/messages",
        headers=auth_headers(booker),
        json={"content": "hello"},
    )
    assert response.status_code == 404
