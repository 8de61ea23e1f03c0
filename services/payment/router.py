"""
services/payment/router.py
Settling invoice payments. Card capture happens at the payment provider;
this marks the payment completed and confirms the booking (and the gig
application, for gigs) in the same transaction.
"""

import logging
from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import get_redis
from services.notification.service import dispatch_emails, notify
from services.realtime.change_feed import change_event, publish_changes, row_snapshot
from shared.middleware.auth import get_current_user
from shared.models.models import (
    Booking,
    BookingStatus,
    GigApplication,
    GigApplicationStatus,
    NotificationType,
    Payment,
    PaymentStatus,
    TalentProfile,
    User,
    UserRole,
)
from shared.schemas.schemas import PaymentResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


async def _get_payment_or_404(payment_id: UUID, db: AsyncSession) -> Payment:
    payment = await db.scalar(select(Payment).where(Payment.id == payment_id))
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    return payment


@router.post("/{payment_id}/process")
async def process_payment(
    payment_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Booker completes an invoice payment. Idempotent: an already completed
    payment returns success without touching anything.
    """
    payment = await _get_payment_or_404(payment_id, db)
    if payment.booker_id != current_user.id and current_user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Not authorized to pay this invoice")

    if payment.payment_status == PaymentStatus.COMPLETED:
        return {"success": True, "message": "Payment already completed", "payment_id": str(payment.id)}
    if payment.payment_status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
        raise HTTPException(
            status_code=409,
            detail=f"Cannot process a payment in '{payment.payment_status.value}' state",
        )

    booking = await db.scalar(select(Booking).where(Booking.id == payment.booking_id))
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")

    changes = []
    old_payment = row_snapshot(payment)
    payment.payment_status = PaymentStatus.COMPLETED
    payment.processed_at = datetime.now(timezone.utc)

    old_booking = row_snapshot(booking)
    booking.status = BookingStatus.CONFIRMED
    booking.payment_id = payment.id
    await db.flush()
    changes.append(change_event("payments", "UPDATE", old_payment, row_snapshot(payment)))
    changes.append(change_event("bookings", "UPDATE", old_booking, row_snapshot(booking)))

    if booking.is_gig_opportunity and payment.talent_id:
        application = await db.scalar(
            select(GigApplication).where(
                GigApplication.gig_id == booking.id,
                GigApplication.talent_id == payment.talent_id,
            )
        )
        if application and application.status != GigApplicationStatus.CONFIRMED:
            old_application = row_snapshot(application)
            application.status = GigApplicationStatus.CONFIRMED
            await db.flush()
            changes.append(
                change_event("gig_applications", "UPDATE", old_application, row_snapshot(application))
            )

    notifications = [
        await notify(
            db,
            payment.booker_id,
            NotificationType.PAYMENT_COMPLETED,
            booking_id=booking.id,
            currency=payment.currency,
            amount=payment.total_amount,
        )
    ]
    if payment.talent_id:
        talent_user_id = await db.scalar(
            select(TalentProfile.user_id).where(TalentProfile.id == payment.talent_id)
        )
        if talent_user_id:
            notifications.append(
                await notify(
                    db,
                    talent_user_id,
                    NotificationType.PAYMENT_RECEIVED,
                    booking_id=booking.id,
                    currency=payment.currency,
                    amount=payment.talent_earnings,
                    event_type=booking.event_type,
                )
            )
    await db.commit()
    logger.info(f"Payment {payment.id} completed for booking {booking.id}")

    await publish_changes(redis, changes)
    dispatch_emails(notifications)
    return {"success": True, "message": "Payment processed successfully", "payment_id": str(payment.id)}


@router.get("/me/history", response_model=list[PaymentResponse])
async def get_payment_history(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Payments the caller made as booker or received as talent."""
    profile = await db.scalar(select(TalentProfile).where(TalentProfile.user_id == current_user.id))
    scope = [Payment.booker_id == current_user.id]
    if profile:
        scope.append(Payment.talent_id == profile.id)
    result = await db.execute(
        select(Payment)
        .where(or_(*scope))
        .order_by(Payment.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return [PaymentResponse.model_validate(p) for p in result.scalars()]


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    payment = await _get_payment_or_404(payment_id, db)
    if current_user.role != UserRole.ADMIN and payment.booker_id != current_user.id:
        profile = await db.scalar(select(TalentProfile).where(TalentProfile.user_id == current_user.id))
        if not profile or payment.talent_id != profile.id:
            raise HTTPException(status_code=403, detail="Not authorized")
    return PaymentResponse.model_validate(payment)
