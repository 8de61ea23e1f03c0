"""
tests/test_websockets.py
End-to-end WebSocket tests: /ws/workflow (badge seed, notices and counts
after committed changes, mark_read) and /ws/chat/{channel_id} (participant
check, redaction, no backlog on rejoin).

REST calls and sockets share one TestClient portal, so the app, its
fakeredis client and its pub/sub listeners all live on the same event loop.
"""

import time
import uuid
from datetime import date, timedelta

import fakeredis
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

import main
from config.redis_client import get_redis
from services.chat.channel import build_channel_id
from shared.models.models import Booking, BookingStatus, TalentProfile, User
from shared.utils.security import create_access_token
from tests.conftest import auth_headers

SUBSCRIBE_GRACE = 0.3


def token_for(user: User) -> str:
    token, _ = create_access_token(str(user.id), user.role.value, user.email)
    return token


def receive_until(ws, frame_type: str, limit: int = 10) -> dict:
    for _ in range(limit):
        frame = ws.receive_json()
        if frame["type"] == frame_type:
            return frame
    pytest.fail(f"no {frame_type!r} frame within {limit} frames")


async def _noop():
    return None


@pytest.fixture
def live_client(monkeypatch):
    for name in ("init_db", "close_db", "init_redis", "close_redis"):
        monkeypatch.setattr(main, name, _noop)

    clients = {}

    def shared_redis():
        # Created lazily so it binds to the portal's event loop
        if "redis" not in clients:
            clients["redis"] = fakeredis.FakeAsyncRedis(decode_responses=True)
        return clients["redis"]

    main.app.dependency_overrides[get_redis] = shared_redis
    with TestClient(main.app) as client:
        yield client
    main.app.dependency_overrides.clear()


# ── /ws/workflow ───────────────────────────────────────────────────────────────

def test_workflow_socket_rejects_bad_token(live_client: TestClient):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with live_client.websocket_connect("/ws/workflow?token=not-a-jwt"):
            pass
    assert exc_info.value.code == 4401


def test_workflow_socket_requires_token(live_client: TestClient):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with live_client.websocket_connect("/ws/workflow"):
            pass
    assert exc_info.value.code == 4401


@pytest.fixture
async def approved_booking(db, booker: User, talent_profile: TalentProfile) -> Booking:
    approved = Booking(
        id=uuid.uuid4(),
        user_id=booker.id,
        talent_id=talent_profile.id,
        status=BookingStatus.APPROVED,
        event_type="Gala",
        event_date=date.today() + timedelta(days=20),
    )
    db.add(approved)
    await db.commit()
    return approved


def test_workflow_socket_streams_notice_and_counts(
    live_client: TestClient,
    booker: User,
    talent_user: User,
    booking: Booking,
    approved_booking: Booking,
):
    with live_client.websocket_connect(f"/ws/workflow?token={token_for(booker)}") as ws:
        # Seeded from the approved booking touched within the window
        assert ws.receive_json() == {"type": "counts", "invoices": 1, "requests": 0}

        ws.send_json({"action": "mark_read", "counter": "requests"})
        assert ws.receive_json() == {"type": "counts", "invoices": 1, "requests": 0}
        time.sleep(SUBSCRIBE_GRACE)

        response = live_client.post(
            "/invoices/manual",
            headers=auth_headers(talent_user),
            json={"type": "booking", "booking_id": str(booking.id), "amount": 500},
        )
        assert response.status_code == 200

        notice = receive_until(ws, "notice")
        assert notice["title"] == "Invoice Received"
        assert notice["table"] == "bookings"
        assert notice["row_id"] == str(booking.id)

        counts = receive_until(ws, "counts")
        assert counts == {"type": "counts", "invoices": 2, "requests": 0}

        ws.send_json({"action": "mark_read", "counter": "invoices"})
        assert receive_until(ws, "counts") == {"type": "counts", "invoices": 0, "requests": 0}


def test_workflow_socket_ignores_other_bookers_changes(
    live_client: TestClient,
    other_booker: User,
    talent_user: User,
    booking: Booking,
):
    with live_client.websocket_connect(f"/ws/workflow?token={token_for(other_booker)}") as ws:
        assert ws.receive_json() == {"type": "counts", "invoices": 0, "requests": 0}
        time.sleep(SUBSCRIBE_GRACE)

        live_client.post(
            "/invoices/manual",
            headers=auth_headers(talent_user),
            json={"type": "booking", "booking_id": str(booking.id), "amount": 500},
        )
        # Nothing for this viewer arrives ahead of its own command's reply
        ws.send_json({"action": "mark_read", "counter": "invoices"})
        assert ws.receive_json() == {"type": "counts", "invoices": 0, "requests": 0}


# ── /ws/chat/{channel_id} ──────────────────────────────────────────────────────

@pytest.fixture
def channel_id(booker: User, talent_profile: TalentProfile, booking: Booking) -> str:
    return build_channel_id(booker.id, talent_profile.id, booking.event_type)


def test_chat_rejects_stranger(live_client: TestClient, other_booker: User, channel_id: str):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with live_client.websocket_connect(f"/ws/chat/{channel_id}?token={token_for(other_booker)}"):
            pass
    assert exc_info.value.code == 4403


def test_chat_rejects_bad_token(live_client: TestClient, channel_id: str):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with live_client.websocket_connect(f"/ws/chat/{channel_id}?token=garbage"):
            pass
    assert exc_info.value.code == 4401


def test_chat_rejects_malformed_channel(live_client: TestClient, booker: User):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with live_client.websocket_connect(f"/ws/chat/not-a-channel?token={token_for(booker)}"):
            pass
    assert exc_info.value.code == 4400


def _send(ws, text: str) -> dict:
    """Send and wait for the sender's own (redacted) copy."""
    ws.send_json({"content": text})
    frame = ws.receive_json()
    assert frame["type"] == "broadcast"
    return frame["payload"]


def test_chat_redacts_and_relays_between_participants(
    live_client: TestClient,
    booker: User,
    talent_user: User,
    channel_id: str,
):
    booker_url = f"/ws/chat/{channel_id}?token={token_for(booker)}"
    talent_url = f"/ws/chat/{channel_id}?token={token_for(talent_user)}"

    with live_client.websocket_connect(booker_url) as booker_ws:
        _send(booker_ws, "hello before anyone joined")

        with live_client.websocket_connect(talent_url) as talent_ws:
            _send(talent_ws, "hi")
            assert booker_ws.receive_json()["payload"]["content"] == "hi"

            sent = _send(booker_ws, "call me at 555-123-4567")
            assert sent["content"] == "call me at [PHONE REMOVED]"
            assert sent["senderId"] == str(booker.id)

            # The earlier message is never replayed to the late joiner
            received = talent_ws.receive_json()["payload"]
            assert received["id"] == sent["id"]
            assert received["content"] == "call me at [PHONE REMOVED]"

        with live_client.websocket_connect(talent_url) as rejoined_ws:
            _send(rejoined_ws, "back again")
            assert booker_ws.receive_json()["payload"]["content"] == "back again"
            latest = _send(booker_ws, "see you at 7")
            assert rejoined_ws.receive_json()["payload"]["id"] == latest["id"]
