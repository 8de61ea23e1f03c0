"""
services/gig/router.py
Gig opportunities: bookings posted without a talent that talents apply to.
Application states: interested → invoice_sent → confirmed
                    (invoice_sent → interested when the booker declines)
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import get_redis
from services.notification.service import dispatch_emails, notify
from services.realtime.change_feed import change_event, publish_changes, row_snapshot
from shared.middleware.auth import get_current_user, get_talent_profile
from shared.models.models import (
    Booking,
    BookingStatus,
    GigApplication,
    GigApplicationStatus,
    NotificationType,
    TalentProfile,
    User,
)
from shared.schemas.schemas import (
    BookingResponse,
    GigApplicationResponse,
    GigApplyRequest,
    MessageResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gigs", tags=["Gigs"])


async def _get_open_gig_or_404(gig_id: UUID, db: AsyncSession) -> Booking:
    gig = await db.scalar(
        select(Booking).where(Booking.id == gig_id, Booking.is_gig_opportunity == True)  # noqa: E712
    )
    if not gig:
        raise HTTPException(status_code=404, detail="Gig not found")
    return gig


@router.get("", response_model=list[BookingResponse])
async def list_open_gigs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Gig opportunities still waiting for a talent."""
    result = await db.execute(
        select(Booking)
        .where(
            Booking.is_gig_opportunity == True,  # noqa: E712
            Booking.status == BookingStatus.PENDING,
        )
        .order_by(Booking.event_date.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return [BookingResponse.model_validate(b) for b in result.scalars()]


@router.post(
    "/{gig_id}/apply",
    response_model=GigApplicationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def apply_to_gig(
    gig_id: UUID,
    data: GigApplyRequest,
    talent: TalentProfile = Depends(get_talent_profile),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    gig = await _get_open_gig_or_404(gig_id, db)
    if gig.status != BookingStatus.PENDING:
        raise HTTPException(status_code=409, detail="Gig is no longer open")

    application = GigApplication(
        gig_id=gig.id,
        talent_id=talent.id,
        status=GigApplicationStatus.INTERESTED,
        message=data.message,
    )
    db.add(application)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="You already applied to this gig")

    notification = await notify(
        db,
        gig.user_id,
        NotificationType.GIG_APPLICATION,
        booking_id=gig.id,
        artist_name=talent.artist_name or "A talent",
        event_type=gig.event_type,
    )
    insert = change_event("gig_applications", "INSERT", None, row_snapshot(application))
    await db.commit()

    await publish_changes(redis, [insert])
    dispatch_emails([notification])
    return GigApplicationResponse.model_validate(application)


@router.get("/{gig_id}/applications", response_model=list[GigApplicationResponse])
async def list_gig_applications(
    gig_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    gig = await _get_open_gig_or_404(gig_id, db)
    if gig.user_id != current_user.id:
        raise HTTPException(status_code=403, detail="Not authorized")
    result = await db.execute(
        select(GigApplication)
        .where(GigApplication.gig_id == gig.id)
        .order_by(GigApplication.created_at.asc())
    )
    return [GigApplicationResponse.model_validate(a) for a in result.scalars()]


@router.post("/applications/{application_id}/decline-invoice", response_model=MessageResponse)
async def decline_gig_invoice(
    application_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Gig owner declines a talent's invoice; the talent may send a new one."""
    application = await db.scalar(select(GigApplication).where(GigApplication.id == application_id))
    if not application:
        raise HTTPException(status_code=404, detail="Gig application not found")
    gig = await _get_open_gig_or_404(application.gig_id, db)
    if gig.user_id != current_user.id:
        raise HTTPException(status_code=403, detail="Not authorized")
    if application.status != GigApplicationStatus.INVOICE_SENT:
        raise HTTPException(status_code=409, detail="No pending invoice on this application")

    changes = []
    old_application = row_snapshot(application)
    application.status = GigApplicationStatus.INTERESTED
    old_gig = row_snapshot(gig)
    gig.status = BookingStatus.PENDING
    gig.talent_id = None
    gig.payment_id = None
    await db.flush()
    changes.append(change_event("gig_applications", "UPDATE", old_application, row_snapshot(application)))
    changes.append(change_event("bookings", "UPDATE", old_gig, row_snapshot(gig)))

    talent_user_id = await db.scalar(
        select(TalentProfile.user_id).where(TalentProfile.id == application.talent_id)
    )
    notification = None
    if talent_user_id:
        notification = await notify(
            db,
            talent_user_id,
            NotificationType.INVOICE_DECLINED,
            booking_id=gig.id,
            event_type=gig.event_type,
        )
    await db.commit()

    await publish_changes(redis, changes)
    dispatch_emails([notification])
    return MessageResponse(message="Gig invoice declined")
