"""
services/notification/counters.py
Unread badge counters driven by row change events.

SnapshotCounter starts from a count query and is then adjusted by live
events without re-querying, so it can drift if events are missed.
LiveCounter starts at zero and only moves on events seen while subscribed.
Both are immutable: apply() returns a new counter, and count is never negative.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import Booking, BookingStatus
from shared.schemas.schemas import ChangeEvent, ChangeType, PaymentRow

EventFilter = Callable[[ChangeEvent], bool]

PENDING_STATES = frozenset({BookingStatus.PENDING.value})


def row_status(row) -> Optional[str]:
    if row is None:
        return None
    value = row.payment_status if isinstance(row, PaymentRow) else row.status
    return getattr(value, "value", value)


def _leaves(event: ChangeEvent, states: frozenset) -> bool:
    return (
        event.type == ChangeType.UPDATE
        and row_status(event.old) in states
        and row_status(event.new) not in states
    )


@dataclass(frozen=True)
class SnapshotCounter:
    matches: EventFilter = field(compare=False, repr=False)
    count: int = 0
    pending_states: frozenset = PENDING_STATES

    def apply(self, event: ChangeEvent) -> "SnapshotCounter":
        if self.matches(event) and _leaves(event, self.pending_states):
            return replace(self, count=self.count + 1)
        return self

    def mark_read(self) -> "SnapshotCounter":
        return replace(self, count=0)


@dataclass(frozen=True)
class LiveCounter:
    matches: EventFilter = field(compare=False, repr=False)
    count: int = 0
    pending_states: frozenset = PENDING_STATES

    def apply(self, event: ChangeEvent) -> "LiveCounter":
        if not self.matches(event):
            return self
        if event.type == ChangeType.INSERT and row_status(event.new) in self.pending_states:
            return replace(self, count=self.count + 1)
        if _leaves(event, self.pending_states):
            return replace(self, count=max(0, self.count - 1))
        return self

    def mark_read(self) -> "LiveCounter":
        return replace(self, count=0)


# ── Counters used by the workflow socket ──────────────────────

def booker_invoice_counter(user_id: str, seed: int = 0) -> SnapshotCounter:
    """Bookings of this booker that moved past `pending` (an invoice arrived)."""
    def matches(event: ChangeEvent) -> bool:
        return event.table == "bookings" and event.new.user_id == user_id

    return SnapshotCounter(matches=matches, count=max(0, seed))


def talent_request_counter(talent_id: Optional[str]) -> LiveCounter:
    """Open booking requests addressed to this talent."""
    def matches(event: ChangeEvent) -> bool:
        return (
            talent_id is not None
            and event.table == "bookings"
            and event.new.talent_id == talent_id
        )

    return LiveCounter(matches=matches)


async def count_recent_invoices(db: AsyncSession, user_id: UUID) -> int:
    """Snapshot query: the booker's approved bookings touched inside the window."""
    cutoff = datetime.now(timezone.utc) - timedelta(hours=settings.SNAPSHOT_WINDOW_HOURS)
    count = await db.scalar(
        select(func.count(Booking.id)).where(
            Booking.user_id == user_id,
            Booking.status == BookingStatus.APPROVED,
            Booking.updated_at >= cutoff,
        )
    )
    return count or 0
