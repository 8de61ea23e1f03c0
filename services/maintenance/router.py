"""
services/maintenance/router.py
Admin-triggered maintenance jobs. The same cleanup also runs daily from
Celery beat (tasks.maintenance_tasks.cleanup_past_events).
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.maintenance.service import cleanup_message, delete_stale_bookings, enqueue_chat_purge
from shared.middleware.auth import require_admin
from shared.models.models import User
from shared.schemas.schemas import CleanupResponse

router = APIRouter(prefix="/maintenance", tags=["Maintenance"])


@router.post("/cleanup-past-events", response_model=CleanupResponse)
async def cleanup_past_events(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Hard-delete past bookings that were never completed or declined."""
    deleted_ids = await delete_stale_bookings(db)
    await db.commit()
    enqueue_chat_purge(deleted_ids)
    return CleanupResponse(deleted_count=len(deleted_ids), message=cleanup_message(len(deleted_ids)))
