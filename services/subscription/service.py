"""
services/subscription/service.py
Monthly booking allowance for talents without a Pro subscription.

A booking counts as accepted once the talent has invoiced it: an invoice
payment exists for it, created in the current UTC calendar month, and the
booking has not been declined. Pro talents are unlimited.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import Booking, BookingStatus, Payment, PaymentStatus, TalentProfile


def month_start(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def monthly_booking_limit(talent: TalentProfile) -> Optional[int]:
    """None means unlimited."""
    return None if talent.is_pro_subscriber else settings.STANDARD_MONTHLY_BOOKING_LIMIT


async def accepted_bookings_this_month(db: AsyncSession, talent_id) -> int:
    query = (
        select(func.count(func.distinct(Payment.booking_id)))
        .join(Booking, Booking.id == Payment.booking_id)
        .where(
            Payment.talent_id == talent_id,
            Payment.payment_method == settings.INVOICE_PAYMENT_METHOD,
            Payment.created_at >= month_start(),
            Payment.payment_status.not_in((PaymentStatus.FAILED, PaymentStatus.CANCELLED)),
            Booking.status != BookingStatus.DECLINED,
        )
    )
    return (await db.scalar(query)) or 0


async def booking_allowance(db: AsyncSession, talent: TalentProfile) -> dict:
    limit = monthly_booking_limit(talent)
    accepted = 0 if limit is None else await accepted_bookings_this_month(db, talent.id)
    return {
        "accepted_bookings_this_month": accepted,
        "monthly_booking_limit": limit,
        "can_accept_booking": limit is None or accepted < limit,
    }
