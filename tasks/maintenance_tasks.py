"""
tasks/maintenance_tasks.py
Periodic housekeeping: stale-booking cleanup and chat-history purge.
"""

import logging
from uuid import UUID

from sqlalchemy import delete

from services.maintenance.service import cleanup_message, delete_stale_bookings_sync, enqueue_chat_purge
from tasks.celery_app import celery_app, get_sync_session

logger = logging.getLogger(__name__)


@celery_app.task
def cleanup_past_events():
    """
    Daily: hard-delete bookings whose event date has passed and that were
    never completed or declined.
    """
    db = get_sync_session()
    try:
        deleted_ids = delete_stale_bookings_sync(db)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception(f"cleanup_past_events failed: {e}")
        raise
    finally:
        db.close()

    enqueue_chat_purge(deleted_ids)
    return {
        "success": True,
        "deletedCount": len(deleted_ids),
        "message": cleanup_message(len(deleted_ids)),
    }


@celery_app.task(bind=True, max_retries=3, default_retry_delay=120)
def purge_chat_messages(self, booking_ids: list[str]):
    """Remove stored chat history for deleted bookings."""
    from shared.models.models import ChatMessage

    db = get_sync_session()
    try:
        result = db.execute(
            delete(ChatMessage)
            .where(ChatMessage.booking_id.in_([UUID(b) for b in booking_ids]))
            .execution_options(synchronize_session=False)
        )
        db.commit()
        logger.info(f"Purged {result.rowcount} chat message(s) for {len(booking_ids)} deleted booking(s)")
        return result.rowcount
    except Exception as e:
        db.rollback()
        logger.exception(f"purge_chat_messages failed: {e}")
        raise self.retry(exc=e)
    finally:
        db.close()
