"""
tasks/celery_app.py
Celery application instance shared across all task modules.

Workers are started with:
    celery -A tasks.celery_app worker --loglevel=info --concurrency=4

Beat scheduler (periodic tasks):
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config.settings import settings

celery_app = Celery(
    "talent_booking",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.notification_tasks",
        "tasks.maintenance_tasks",
    ],
)

# ── Configuration ─────────────────────────────────────────────────────────────

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Acknowledge after execution so a dying worker does not lose the task
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Result expiry: keep task results for 1 hour
    result_expires=3600,

    task_max_retries=3,

    task_annotations={
        "tasks.notification_tasks.send_notification_email": {"rate_limit": "20/s"},
    },

    task_routes={
        "tasks.notification_tasks.*": {"queue": "notifications"},
        "tasks.maintenance_tasks.*": {"queue": "maintenance"},
    },

    worker_prefetch_multiplier=1,
)

# ── Periodic Tasks (Beat Schedule) ────────────────────────────────────────────

celery_app.conf.beat_schedule = {
    # Hard-delete past bookings that were never completed or declined
    "cleanup-past-events": {
        "task": "tasks.maintenance_tasks.cleanup_past_events",
        "schedule": crontab(hour=3, minute=0),  # daily, 03:00 UTC
    },
}


# ── Sync DB access for tasks ──────────────────────────────────────────────────

def sync_database_url(url: str) -> str:
    """Celery runs sync: swap the async driver for its blocking counterpart."""
    return url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


def get_sync_session():
    """Create a synchronous SQLAlchemy session."""
    engine = create_engine(sync_database_url(settings.DATABASE_URL), pool_pre_ping=True)
    Session = sessionmaker(bind=engine)
    return Session()
