"""
services/booking/router.py
Booking requests and the booker's side of the invoice workflow.
States: pending → pending_approval → approved → confirmed → completed
        (declined is terminal; an invoice decline can be retried with a new invoice)
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import get_redis
from services.notification.service import dispatch_emails, notify
from services.realtime.change_feed import change_event, publish_changes, row_snapshot
from shared.middleware.auth import get_current_user, require_booker
from shared.models.models import (
    Booking,
    BookingStatus,
    NotificationType,
    TalentProfile,
    User,
    UserRole,
)
from shared.schemas.schemas import BookingCreateRequest, BookingResponse, DeclineInvoiceRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ── Helpers ───────────────────────────────────────────────────

async def _get_booking_or_404(booking_id: UUID, db: AsyncSession) -> Booking:
    result = await db.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


async def _talent_profile_for(db: AsyncSession, user: User):
    return await db.scalar(select(TalentProfile).where(TalentProfile.user_id == user.id))


async def _can_view(db: AsyncSession, booking: Booking, user: User) -> bool:
    if user.role == UserRole.ADMIN or booking.user_id == user.id:
        return True
    if booking.is_gig_opportunity and user.role == UserRole.TALENT:
        return True
    profile = await _talent_profile_for(db, user)
    return bool(profile and booking.talent_id == profile.id)


# ── Booking Requests ──────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    current_user: User = Depends(require_booker),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Request a talent (or post a gig opportunity). Starts in `pending`."""
    talent = None
    if data.talent_id is not None:
        talent = await db.scalar(select(TalentProfile).where(TalentProfile.id == data.talent_id))
        if not talent:
            raise HTTPException(status_code=404, detail="Talent not found")

    booking = Booking(
        user_id=current_user.id,
        talent_id=None if data.is_gig_opportunity else data.talent_id,
        status=BookingStatus.PENDING,
        event_type=data.event_type,
        event_date=data.event_date,
        event_location=data.event_location,
        description=data.description,
        budget=data.budget,
        budget_currency=data.budget_currency.upper() if data.budget_currency else None,
        is_gig_opportunity=data.is_gig_opportunity,
    )
    db.add(booking)
    await db.flush()

    notification = None
    if talent and not data.is_gig_opportunity:
        notification = await notify(
            db,
            talent.user_id,
            NotificationType.NEW_BOOKING,
            booking_id=booking.id,
            event_type=booking.event_type,
            event_date=booking.event_date.isoformat(),
        )
    insert = change_event("bookings", "INSERT", None, row_snapshot(booking))
    await db.commit()

    await publish_changes(redis, [insert])
    dispatch_emails([notification])
    return BookingResponse.model_validate(booking)


# ── Invoice Decline ───────────────────────────────────────────

@router.post("/decline-invoice")
async def decline_invoice(
    data: DeclineInvoiceRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Booker declines the invoice attached to their booking.
    Not found → 404, caller is not the booker → 403; both as {"error": ...}.
    The talent notification is best effort.
    """
    try:
        booking = await db.scalar(select(Booking).where(Booking.id == data.booking_id))
        if not booking:
            return JSONResponse(status_code=404, content={"error": "Booking not found"})
        if booking.user_id != current_user.id:
            return JSONResponse(
                status_code=403,
                content={"error": "Only the booker can decline this invoice"},
            )

        old = row_snapshot(booking)
        booking.status = BookingStatus.DECLINED
        await db.flush()
        update = change_event("bookings", "UPDATE", old, row_snapshot(booking))

        notification = None
        if booking.talent_id:
            talent_user_id = await db.scalar(
                select(TalentProfile.user_id).where(TalentProfile.id == booking.talent_id)
            )
            if talent_user_id:
                notification = await notify(
                    db,
                    talent_user_id,
                    NotificationType.INVOICE_DECLINED,
                    booking_id=booking.id,
                    event_type=booking.event_type,
                )
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Declining invoice for booking {data.booking_id} failed: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Failed to decline invoice"})

    await publish_changes(redis, [update])
    dispatch_emails([notification])
    return {"success": True}


# ── Read Endpoints ────────────────────────────────────────────

@router.get("", response_model=list[BookingResponse])
async def list_my_bookings(
    status_filter: BookingStatus = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Bookers see their requests; talents see bookings addressed to them."""
    profile = await _talent_profile_for(db, current_user)
    scope = [Booking.user_id == current_user.id]
    if profile:
        scope.append(Booking.talent_id == profile.id)

    query = select(Booking).where(or_(*scope))
    if status_filter:
        query = query.where(Booking.status == status_filter)

    query = query.order_by(Booking.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    return [BookingResponse.model_validate(b) for b in result.scalars()]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await _get_booking_or_404(booking_id, db)
    if not await _can_view(db, booking, current_user):
        raise HTTPException(status_code=403, detail="Not authorized")
    return BookingResponse.model_validate(booking)
