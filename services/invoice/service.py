"""
services/invoice/service.py
Invoice issuing: commission split, payment upsert, booking/gig status
updates and the booker notification.

Functions here only flush; the caller owns the transaction and commits once,
so a failure at any step leaves no payment row and no status change behind.
The booker notification runs in a SAVEPOINT and cannot abort the invoice.
"""

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.notification.service import notify
from services.realtime.change_feed import change_event, row_snapshot
from services.subscription.service import booking_allowance
from shared.models.models import (
    Booking,
    BookingStatus,
    GigApplication,
    GigApplicationStatus,
    Notification,
    NotificationType,
    Payment,
    PaymentStatus,
    TalentProfile,
    User,
    UserRole,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class InvoiceError(Exception):
    """Business-rule rejection; nothing has been committed."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class InvoiceResult:
    payment: Payment
    booking: Booking
    changes: list[dict] = field(default_factory=list)
    notifications: list[Optional[Notification]] = field(default_factory=list)


# ── Commission ────────────────────────────────────────────────

def commission_rate_for(is_pro_subscriber: bool) -> int:
    return settings.PRO_COMMISSION_RATE if is_pro_subscriber else settings.STANDARD_COMMISSION_RATE


def split_amount(total: Decimal, rate: int) -> tuple[Decimal, Decimal, Decimal]:
    """
    Return (total, platform_commission, talent_earnings) rounded to cents.
    Earnings are total minus commission, so the two always add up exactly.
    """
    total = Decimal(total).quantize(CENT, rounding=ROUND_HALF_UP)
    commission = (total * rate / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)
    return total, commission, total - commission


# ── Shared steps ──────────────────────────────────────────────

async def _load_talent(db: AsyncSession, talent_id: Optional[UUID]) -> TalentProfile:
    if talent_id is None:
        raise InvoiceError("No talent assigned to this booking")
    profile = await db.scalar(select(TalentProfile).where(TalentProfile.id == talent_id))
    if not profile:
        raise InvoiceError("Talent profile not found", status_code=404)
    return profile


async def _check_booking_allowance(db: AsyncSession, talent: TalentProfile) -> None:
    allowance = await booking_allowance(db, talent)
    if not allowance["can_accept_booking"]:
        raise InvoiceError(
            f"Monthly booking limit reached ({allowance['monthly_booking_limit']} per month); "
            f"upgrade to Pro for unlimited bookings",
            status_code=403,
        )


async def _upsert_payment(
    db: AsyncSession,
    booking: Booking,
    talent: TalentProfile,
    agreed_price: Decimal,
    currency: str,
) -> tuple[Payment, dict]:
    """Insert or refresh the invoice payment keyed by (booking_id, payment_method)."""
    rate = commission_rate_for(talent.is_pro_subscriber)
    total, commission, earnings = split_amount(agreed_price, rate)
    if total <= 0:
        raise InvoiceError("Valid agreed price is required")
    method = settings.INVOICE_PAYMENT_METHOD

    payment = await db.scalar(
        select(Payment).where(Payment.booking_id == booking.id, Payment.payment_method == method)
    )
    old = row_snapshot(payment) if payment else None
    if payment is None:
        await _check_booking_allowance(db, talent)
        payment = Payment(booking_id=booking.id, payment_method=method)
        db.add(payment)

    payment.booker_id = booking.user_id
    payment.talent_id = talent.id
    payment.total_amount = total
    payment.commission_rate = rate
    payment.platform_commission = commission
    payment.talent_earnings = earnings
    payment.currency = currency.upper()
    payment.payment_status = PaymentStatus.PENDING
    payment.processed_at = None
    await db.flush()

    new = row_snapshot(payment)
    return payment, change_event("payments", "UPDATE" if old else "INSERT", old, new)


async def _set_booking_status(
    db: AsyncSession,
    booking: Booking,
    status: BookingStatus,
    **values,
) -> dict:
    old = row_snapshot(booking)
    booking.status = status
    for key, value in values.items():
        setattr(booking, key, value)
    await db.flush()
    return change_event("bookings", "UPDATE", old, row_snapshot(booking))


# ── Booker-approved invoice ───────────────────────────────────

async def create_booking_invoice(
    db: AsyncSession,
    booking_id: UUID,
    agreed_price: Decimal,
    currency: str,
    requested_rate: Optional[Decimal] = None,
    caller: Optional[User] = None,
) -> InvoiceResult:
    """
    Issue an invoice for a booking: the payment is created (or refreshed)
    as pending and the booking moves to `approved`, awaiting payment.
    """
    booking = await db.scalar(select(Booking).where(Booking.id == booking_id))
    if not booking:
        raise InvoiceError("Booking not found", status_code=404)

    talent = await _load_talent(db, booking.talent_id)
    if caller is not None and caller.role != UserRole.ADMIN and caller.id != talent.user_id:
        raise InvoiceError("Only the booked talent can invoice this booking", status_code=403)

    if requested_rate is not None and requested_rate != commission_rate_for(talent.is_pro_subscriber):
        logger.warning(
            f"Ignoring commission override {requested_rate} for booking {booking.id}; "
            f"rate is derived from the talent's subscription"
        )

    payment, payment_change = await _upsert_payment(db, booking, talent, agreed_price, currency)
    booking_change = await _set_booking_status(
        db, booking, BookingStatus.APPROVED, payment_id=payment.id
    )

    notification = await notify(
        db,
        booking.user_id,
        NotificationType.INVOICE_RECEIVED,
        booking_id=booking.id,
        currency=payment.currency,
        amount=payment.total_amount,
        artist_name=talent.artist_name or "the talent",
    )

    logger.info(
        f"Invoice {payment.id} for booking {booking.id}: total={payment.total_amount} "
        f"rate={payment.commission_rate}% commission={payment.platform_commission}"
    )
    return InvoiceResult(
        payment=payment,
        booking=booking,
        changes=[payment_change, booking_change],
        notifications=[notification],
    )


# ── Talent-sent invoice (direct booking or gig) ───────────────

async def send_talent_invoice(
    db: AsyncSession,
    talent: TalentProfile,
    invoice_type: str,
    amount: Decimal,
    currency: str,
    booking_id: Optional[UUID] = None,
    gig_application_id: Optional[UUID] = None,
) -> InvoiceResult:
    """
    A talent invoices the booker. Direct bookings move to `pending_approval`;
    for gigs the application moves to `invoice_sent` and the gig booking is
    assigned to the talent and moved to `pending_approval`.
    """
    changes: list[dict] = []

    if invoice_type == "booking":
        booking = await db.scalar(select(Booking).where(Booking.id == booking_id))
        if not booking:
            raise InvoiceError("Booking not found", status_code=404)
        if booking.talent_id != talent.id:
            raise InvoiceError("This booking is not assigned to you", status_code=403)
        if booking.status not in (BookingStatus.PENDING, BookingStatus.PENDING_APPROVAL):
            raise InvoiceError(f"Cannot invoice a booking in '{booking.status.value}' state", status_code=409)
        payment, payment_change = await _upsert_payment(db, booking, talent, amount, currency)
        changes.append(payment_change)
    else:
        application = await db.scalar(
            select(GigApplication).where(GigApplication.id == gig_application_id)
        )
        if not application:
            raise InvoiceError("Gig application not found", status_code=404)
        if application.talent_id != talent.id:
            raise InvoiceError("This gig application is not yours", status_code=403)
        booking = await db.scalar(
            select(Booking).where(
                Booking.id == application.gig_id,
                Booking.is_gig_opportunity == True,  # noqa: E712
            )
        )
        if not booking:
            raise InvoiceError("Gig not found", status_code=404)

        payment, payment_change = await _upsert_payment(db, booking, talent, amount, currency)
        changes.append(payment_change)

        old_application = row_snapshot(application)
        application.status = GigApplicationStatus.INVOICE_SENT
        await db.flush()
        changes.append(
            change_event("gig_applications", "UPDATE", old_application, row_snapshot(application))
        )

    changes.append(
        await _set_booking_status(
            db,
            booking,
            BookingStatus.PENDING_APPROVAL,
            payment_id=payment.id,
            talent_id=talent.id,
        )
    )

    notification = await notify(
        db,
        booking.user_id,
        NotificationType.INVOICE_RECEIVED,
        booking_id=booking.id,
        currency=payment.currency,
        amount=payment.total_amount,
        artist_name=talent.artist_name or "the talent",
    )
    logger.info(f"Talent {talent.id} sent {invoice_type} invoice {payment.id} for booking {booking.id}")
    return InvoiceResult(payment=payment, booking=booking, changes=changes, notifications=[notification])
