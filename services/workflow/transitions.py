"""
services/workflow/transitions.py
Booking / gig / payment transition rules.

classify() decides which user-facing notice (if any) a single row change
produces for a given viewer. apply_event() is the listener's pure transition
function: (state, event) -> (state', effects). Neither does any I/O.

Bookings:
    pending          -> pending_approval   "Invoice Received"   (viewer is the booker)
    *                -> confirmed          "Booking Confirmed"  (every listener)
    pending_approval -> pending            "Invoice Declined"   (viewer is the booker)
Gig applications:
    *                -> invoice_sent       "Gig Invoice Sent"
    *                -> confirmed          "Gig Confirmed"
    invoice_sent     -> interested         "Gig Invoice Declined"
Payments:
    entering paid / completed              "Payment Processed"
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Union

from services.notification.counters import (
    LiveCounter,
    SnapshotCounter,
    booker_invoice_counter,
    row_status,
    talent_request_counter,
)
from shared.models.models import BookingStatus, GigApplicationStatus, PaymentStatus
from shared.schemas.schemas import ChangeEvent, ChangeType

logger = logging.getLogger(__name__)

SETTLED_PAYMENT_STATES = frozenset({PaymentStatus.PAID.value, PaymentStatus.COMPLETED.value})


# ── Types ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class Viewer:
    user_id: str
    talent_id: Optional[str] = None


@dataclass(frozen=True)
class Notice:
    title: str
    message: str
    table: str
    row_id: str
    variant: str = "default"


@dataclass(frozen=True)
class Refresh:
    table: str


@dataclass(frozen=True)
class CountsChanged:
    invoices: int
    requests: int


Effect = Union[Notice, Refresh, CountsChanged]


@dataclass(frozen=True)
class WorkflowState:
    viewer: Viewer
    invoices: SnapshotCounter
    requests: LiveCounter

    @classmethod
    def initial(cls, viewer: Viewer, invoice_seed: int = 0) -> "WorkflowState":
        return cls(
            viewer=viewer,
            invoices=booker_invoice_counter(viewer.user_id, invoice_seed),
            requests=talent_request_counter(viewer.talent_id),
        )

    def counts(self) -> CountsChanged:
        return CountsChanged(invoices=self.invoices.count, requests=self.requests.count)


# ── Classifier ────────────────────────────────────────────────

def is_meaningful(event: ChangeEvent) -> bool:
    """Inserts always count; updates only when the status field changed."""
    if event.type == ChangeType.INSERT or event.old is None:
        return True
    return row_status(event.old) != row_status(event.new)


def _classify_booking(event: ChangeEvent, viewer: Viewer) -> Optional[Notice]:
    new, status = event.new, row_status(event.new)
    old_status = row_status(event.old)
    is_booker = new.user_id == viewer.user_id

    if status == BookingStatus.PENDING_APPROVAL.value and is_booker:
        return Notice(
            title="Invoice Received",
            message="Your talent has sent an invoice. Check the 'Awaiting Payment' section.",
            table=event.table,
            row_id=new.id,
        )
    if status == BookingStatus.CONFIRMED.value:
        return Notice(
            title="Booking Confirmed! 🎉",
            message="Payment successful! Your booking is now confirmed.",
            table=event.table,
            row_id=new.id,
            variant="success",
        )
    if (
        status == BookingStatus.PENDING.value
        and old_status == BookingStatus.PENDING_APPROVAL.value
        and is_booker
    ):
        return Notice(
            title="Invoice Declined",
            message="The invoice was declined. The talent can send a new one.",
            table=event.table,
            row_id=new.id,
        )
    return None


def _classify_gig_application(event: ChangeEvent, viewer: Viewer) -> Optional[Notice]:
    new, status = event.new, row_status(event.new)
    old_status = row_status(event.old)

    if status == GigApplicationStatus.INVOICE_SENT.value:
        return Notice(
            title="Gig Invoice Sent 📄",
            message="Your invoice for this gig has been sent to the booker.",
            table=event.table,
            row_id=new.id,
        )
    if status == GigApplicationStatus.CONFIRMED.value:
        return Notice(
            title="Gig Confirmed! 🎉",
            message="The booker paid your invoice. The gig is confirmed.",
            table=event.table,
            row_id=new.id,
            variant="success",
        )
    if (
        status == GigApplicationStatus.INTERESTED.value
        and old_status == GigApplicationStatus.INVOICE_SENT.value
    ):
        return Notice(
            title="Gig Invoice Declined",
            message="The booker declined your gig invoice. You can send a new one.",
            table=event.table,
            row_id=new.id,
        )
    return None


def _classify_payment(event: ChangeEvent, viewer: Viewer) -> Optional[Notice]:
    if (
        row_status(event.new) in SETTLED_PAYMENT_STATES
        and row_status(event.old) not in SETTLED_PAYMENT_STATES
    ):
        return Notice(
            title="Payment Processed! 💰",
            message="Payment successful! Your booking is being confirmed.",
            table=event.table,
            row_id=event.new.id,
            variant="success",
        )
    return None


_CLASSIFIERS = {
    "bookings": _classify_booking,
    "gig_applications": _classify_gig_application,
    "payments": _classify_payment,
}


def classify(event: ChangeEvent, viewer: Viewer) -> Optional[Notice]:
    """Return the notice this change produces for `viewer`, or None."""
    if not is_meaningful(event):
        return None
    notice = _CLASSIFIERS[event.table](event, viewer)
    if notice is None:
        logger.info(
            f"{event.table} {event.new.id}: "
            f"{row_status(event.old)} -> {row_status(event.new)} (no notice)"
        )
    return notice


# ── Reducer ───────────────────────────────────────────────────

def apply_event(state: WorkflowState, event: ChangeEvent) -> tuple[WorkflowState, list[Effect]]:
    if not is_meaningful(event):
        return state, []

    effects: list[Effect] = []
    notice = classify(event, state.viewer)
    if notice is not None:
        effects.append(notice)
    effects.append(Refresh(table=event.table))

    new_state = replace(
        state,
        invoices=state.invoices.apply(event),
        requests=state.requests.apply(event),
    )
    if new_state.counts() != state.counts():
        effects.append(new_state.counts())
    return new_state, effects


def mark_read(state: WorkflowState, counter: str) -> tuple[WorkflowState, list[Effect]]:
    """Local 'mark read' on one badge; nothing is written back to storage."""
    if counter == "invoices":
        new_state = replace(state, invoices=state.invoices.mark_read())
    elif counter == "requests":
        new_state = replace(state, requests=state.requests.mark_read())
    else:
        raise ValueError(f"Unknown counter: {counter!r}")
    return new_state, [new_state.counts()]
