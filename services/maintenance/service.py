"""
services/maintenance/service.py
Stale-booking cleanup, shared by the admin endpoint (async session) and
the Celery beat task (sync session).

A booking is stale when its event date is before today and it is neither
completed nor declined. Stale bookings are hard-deleted together with their
payments and gig applications; notifications keep a null booking reference.
Chat messages are purged afterwards by a separate best-effort task.
"""

import logging
from datetime import date, datetime, timezone
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import and_, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from shared.models.models import Booking, BookingStatus, GigApplication, Notification, Payment

logger = logging.getLogger(__name__)

KEPT_STATUSES = (BookingStatus.COMPLETED, BookingStatus.DECLINED)


def stale_booking_ids_query(today: date):
    return select(Booking.id).where(
        and_(Booking.event_date < today, Booking.status.not_in(KEPT_STATUSES))
    )


def _delete_statements(booking_ids: list[UUID]):
    return [
        update(Notification)
        .where(Notification.booking_id.in_(booking_ids))
        .values(booking_id=None)
        .execution_options(synchronize_session=False),
        delete(Payment)
        .where(Payment.booking_id.in_(booking_ids))
        .execution_options(synchronize_session=False),
        delete(GigApplication)
        .where(GigApplication.gig_id.in_(booking_ids))
        .execution_options(synchronize_session=False),
        delete(Booking)
        .where(Booking.id.in_(booking_ids))
        .execution_options(synchronize_session=False),
    ]


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def cleanup_message(count: int) -> str:
    return f"Successfully deleted {count} past event booking(s)"


async def delete_stale_bookings(db: AsyncSession, today: Optional[date] = None) -> list[UUID]:
    """Delete stale bookings; the caller commits. Returns the deleted ids."""
    today = today or utc_today()
    booking_ids = list((await db.scalars(stale_booking_ids_query(today))).all())
    if booking_ids:
        for statement in _delete_statements(booking_ids):
            await db.execute(statement)
    logger.info(f"Stale booking cleanup (before {today.isoformat()}): {len(booking_ids)} booking(s)")
    return booking_ids


def delete_stale_bookings_sync(session: Session, today: Optional[date] = None) -> list[UUID]:
    today = today or utc_today()
    booking_ids = list(session.scalars(stale_booking_ids_query(today)).all())
    if booking_ids:
        for statement in _delete_statements(booking_ids):
            session.execute(statement)
    logger.info(f"Stale booking cleanup (before {today.isoformat()}): {len(booking_ids)} booking(s)")
    return booking_ids


def enqueue_chat_purge(booking_ids: Iterable[UUID]) -> bool:
    """Queue the chat-message purge. Failure is logged; deletions stand."""
    booking_ids = [str(b) for b in booking_ids]
    if not booking_ids:
        return True
    try:
        from tasks.maintenance_tasks import purge_chat_messages
        purge_chat_messages.delay(booking_ids)
        return True
    except Exception as e:
        logger.warning(f"Chat purge for {len(booking_ids)} deleted booking(s) not queued: {e}")
        return False
