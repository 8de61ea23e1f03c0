"""
tests/test_tasks.py
Celery tasks run in-process against the test database (sync driver).
"""

import uuid
from datetime import timedelta

import pytest
from pybreaker import CircuitBreakerError
from sqlalchemy.ext.asyncio import AsyncSession

import tasks.maintenance_tasks as maintenance_tasks
import tasks.notification_tasks as notification_tasks
from services.maintenance.service import utc_today
from shared.models.models import Booking, BookingStatus, Notification, NotificationType, TalentProfile, User
from shared.utils.resilience import circuit_breaker_manager
from tasks.celery_app import celery_app, sync_database_url


def test_sync_database_url():
    assert sync_database_url("postgresql+asyncpg://u:p@db/app") == "postgresql+psycopg2://u:p@db/app"
    assert sync_database_url("sqlite+aiosqlite:///./x.db") == "sqlite:///./x.db"


def test_cleanup_is_scheduled_daily():
    schedule = celery_app.conf.beat_schedule["cleanup-past-events"]
    assert schedule["task"] == "tasks.maintenance_tasks.cleanup_past_events"


@pytest.mark.asyncio
async def test_cleanup_task(db: AsyncSession, booker: User, talent_profile: TalentProfile, monkeypatch):
    db.add(Booking(
        id=uuid.uuid4(),
        user_id=booker.id,
        talent_id=talent_profile.id,
        status=BookingStatus.PENDING,
        event_type="Recital",
        event_date=utc_today() - timedelta(days=1),
    ))
    await db.commit()
    queued = []
    monkeypatch.setattr(maintenance_tasks, "enqueue_chat_purge", lambda ids: queued.append(ids))

    result = maintenance_tasks.cleanup_past_events()

    assert result == {
        "success": True,
        "deletedCount": 1,
        "message": "Successfully deleted 1 past event booking(s)",
    }
    assert len(queued[0]) == 1


@pytest.mark.asyncio
async def test_send_notification_email(db: AsyncSession, booker: User, monkeypatch):
    notification = Notification(
        user_id=booker.id,
        type=NotificationType.INVOICE_RECEIVED.value,
        title="Invoice Received",
        message="You have received an invoice for USD 10.00 from <b>Band</b>.",
    )
    db.add(notification)
    await db.commit()

    sent = []
    monkeypatch.setattr(notification_tasks, "_send_email", lambda *args: sent.append(args))

    assert notification_tasks.send_notification_email(str(notification.id)) is True
    to_email, subject, body = sent[0]
    assert to_email == booker.email
    assert subject == "Invoice Received"
    assert "&lt;b&gt;Band&lt;/b&gt;" in body


@pytest.mark.asyncio
async def test_send_notification_email_unknown_notification(monkeypatch):
    monkeypatch.setattr(notification_tasks, "_send_email", lambda *args: pytest.fail("sent"))
    assert notification_tasks.send_notification_email(str(uuid.uuid4())) is False


@pytest.mark.asyncio
async def test_open_email_circuit_defers_delivery(db: AsyncSession, booker: User, monkeypatch):
    notification = Notification(
        user_id=booker.id,
        type=NotificationType.PAYMENT_COMPLETED.value,
        title="Booking Confirmed",
        message="Your booking is confirmed.",
    )
    db.add(notification)
    await db.commit()

    sent = []
    monkeypatch.setattr(notification_tasks, "_send_email", lambda *args: sent.append(args))
    breaker = circuit_breaker_manager.get_breaker("email")
    breaker.open()
    try:
        with pytest.raises(CircuitBreakerError):
            notification_tasks.send_notification_email(str(notification.id))
    finally:
        breaker.close()
    assert sent == []
