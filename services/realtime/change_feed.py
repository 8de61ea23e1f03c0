"""
services/realtime/change_feed.py
Row-level change feed over Redis pub/sub.

Writers publish {table, type, schema, old, new} on `changes:<table>` after
their transaction commits. Listeners subscribe with a table, a set of event
types and an optional row filter in `column=eq.value` form. Delivery is
at-most-once: a listener that is not subscribed when a change is published
never sees it.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Iterable, Optional
from uuid import UUID

from sqlalchemy import inspect
from tenacity import retry, stop_after_attempt, wait_exponential

from config.redis_client import RedisCache
from config.settings import settings

logger = logging.getLogger(__name__)


# ── Snapshots ─────────────────────────────────────────────────

def _json_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def row_snapshot(obj) -> dict:
    """Column values of an ORM instance as a JSON-safe dict."""
    mapper = inspect(obj).mapper
    return {
        attr.key: _json_value(getattr(obj, attr.key))
        for attr in mapper.column_attrs
    }


def change_event(table: str, change_type: str, old: Optional[dict], new: dict) -> dict:
    return {
        "table": table,
        "type": change_type,
        "schema": "public",
        "old": old or {},
        "new": new,
    }


def channel_for(table: str) -> str:
    return f"{settings.CHANGE_CHANNEL_PREFIX}:{table}"


# ── Publishing ────────────────────────────────────────────────

@retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=0.1, max=1), reraise=True)
async def _publish(cache: RedisCache, event: dict) -> None:
    await cache.publish_json(channel_for(event["table"]), event)


async def publish_changes(redis, events: Iterable[dict]) -> int:
    """
    Publish committed changes. Never raises: the rows are already
    committed, so a lost change only means a missed live update.
    """
    cache = RedisCache(redis)
    published = 0
    for event in events:
        try:
            await _publish(cache, event)
            published += 1
        except Exception as e:
            logger.warning(f"Change event on {event.get('table')} not published: {e}")
    return published


# ── Subscribing ───────────────────────────────────────────────

@dataclass(frozen=True)
class RowFilter:
    """Equality filter on one column of the new row."""
    column: str
    value: str

    @classmethod
    def parse(cls, expression: str) -> "RowFilter":
        column, _, rest = expression.partition("=")
        operator, _, value = rest.partition(".")
        if not column or operator != "eq" or not value:
            raise ValueError(f"Unsupported row filter: {expression!r}")
        return cls(column=column, value=value)

    def matches(self, row: dict) -> bool:
        return str(row.get(self.column)) == self.value


@dataclass(frozen=True)
class Subscription:
    table: str
    events: frozenset = field(default_factory=lambda: frozenset({"INSERT", "UPDATE"}))
    row_filter: Optional[RowFilter] = None

    def matches(self, event: dict) -> bool:
        if event.get("table") != self.table or event.get("type") not in self.events:
            return False
        if self.row_filter is None:
            return True
        return self.row_filter.matches(event.get("new") or {})


async def listen(redis, subscriptions: list[Subscription]) -> AsyncIterator[dict]:
    """
    Yield raw change events matching any subscription, in the order Redis
    delivers them. Closing the generator unsubscribes.
    """
    channels = sorted({channel_for(s.table) for s in subscriptions})
    pubsub = redis.pubsub()
    await pubsub.subscribe(*channels)
    try:
        while True:
            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if message is None or message.get("type") != "message":
                continue
            try:
                event = json.loads(message["data"])
            except (TypeError, ValueError):
                logger.warning(f"Dropping undecodable change message on {message.get('channel')}")
                continue
            if any(s.matches(event) for s in subscriptions):
                yield event
    finally:
        await pubsub.unsubscribe(*channels)
        await pubsub.aclose()
