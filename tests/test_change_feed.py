"""
tests/test_change_feed.py
Row snapshots, subscription filters and publishing over Redis pub/sub.
"""

import asyncio
import json

import pytest

from services.realtime.change_feed import (
    RowFilter,
    Subscription,
    change_event,
    channel_for,
    listen,
    publish_changes,
    row_snapshot,
)
from shared.models.models import Booking
from shared.schemas.schemas import ChangeEvent


@pytest.mark.asyncio
async def test_row_snapshot_is_json_safe(booking: Booking):
    snapshot = row_snapshot(booking)
    assert snapshot["id"] == str(booking.id)
    assert snapshot["status"] == "pending"
    assert snapshot["budget"] == "1000.00"
    json.dumps(snapshot)


@pytest.mark.asyncio
async def test_change_event_validates(booking: Booking):
    raw = change_event("bookings", "INSERT", None, row_snapshot(booking))
    event = ChangeEvent.model_validate(raw)
    assert event.old is None
    assert event.new.id == str(booking.id)


@pytest.mark.parametrize("expression", ["user_id", "user_id=gt.5", "=eq.5", "user_id=eq."])
def test_row_filter_rejects_unsupported(expression):
    with pytest.raises(ValueError):
        RowFilter.parse(expression)


def test_subscription_matching():
    subscription = Subscription("bookings", row_filter=RowFilter.parse("user_id=eq.b-1"))
    assert subscription.matches({"table": "bookings", "type": "UPDATE", "new": {"user_id": "b-1"}})
    assert not subscription.matches({"table": "bookings", "type": "UPDATE", "new": {"user_id": "b-2"}})
    assert not subscription.matches({"table": "payments", "type": "UPDATE", "new": {"user_id": "b-1"}})

    inserts_only = Subscription("bookings", events=frozenset({"INSERT"}))
    assert not inserts_only.matches({"table": "bookings", "type": "UPDATE", "new": {}})


@pytest.mark.asyncio
async def test_publish_and_listen(redis):
    subscription = Subscription("bookings", row_filter=RowFilter("user_id", "b-1"))
    stream = listen(redis, [subscription])
    first = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0.05)  # let the subscription register

    other = change_event("bookings", "INSERT", None, {"id": "bk-0", "user_id": "b-2", "status": "pending"})
    mine = change_event("bookings", "INSERT", None, {"id": "bk-1", "user_id": "b-1", "status": "pending"})
    assert await publish_changes(redis, [other, mine]) == 2

    received = await asyncio.wait_for(first, timeout=5)
    assert received["new"]["id"] == "bk-1"
    await stream.aclose()


@pytest.mark.asyncio
async def test_publish_never_raises():
    class DeadRedis:
        async def publish(self, channel, message):
            raise ConnectionError("redis down")

    event = change_event("bookings", "INSERT", None, {"id": "bk-1"})
    assert await publish_changes(DeadRedis(), [event]) == 0


def test_channel_names():
    assert channel_for("payments") == "changes:payments"
