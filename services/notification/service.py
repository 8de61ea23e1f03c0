"""
services/notification/service.py
Persisted notification creation shared by every endpoint that causes a
workflow transition. Notifications are secondary effects: a failure is
logged and swallowed, never failing the primary write.
"""

import logging
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import Notification, NotificationType

logger = logging.getLogger(__name__)


# ── Templates ─────────────────────────────────────────────────

TEMPLATES = {
    NotificationType.NEW_BOOKING: {
        "title": "New Booking Request",
        "message": "You have a new booking request for a {event_type} event on {event_date}.",
    },
    NotificationType.INVOICE_RECEIVED: {
        "title": "Invoice Received",
        "message": "You have received an invoice for {currency} {amount:.2f} from {artist_name}.",
    },
    NotificationType.INVOICE_DECLINED: {
        "title": "Invoice Declined",
        "message": "The booker has declined your invoice for the {event_type} event. You can send a new invoice.",
    },
    NotificationType.PAYMENT_COMPLETED: {
        "title": "Payment Completed",
        "message": "Your payment of {currency} {amount:.2f} was successful. Your booking is confirmed.",
    },
    NotificationType.PAYMENT_RECEIVED: {
        "title": "Payment Received",
        "message": "You received a payment of {currency} {amount:.2f} for the {event_type} event.",
    },
    NotificationType.GIG_APPLICATION: {
        "title": "New Gig Application",
        "message": "{artist_name} is interested in your {event_type} gig.",
    },
    NotificationType.NEW_MESSAGE: {
        "title": "New Message",
        "message": "{sender_name} sent you a message about the {event_type} event.",
    },
    NotificationType.SUBSCRIPTION_ACTIVATED: {
        "title": "Pro Subscription Activated",
        "message": (
            "Your {period} Pro subscription has been successfully activated! "
            "You now have access to all Pro features."
        ),
    },
}


def render(notification_type: NotificationType, **template_vars) -> tuple[str, str]:
    """Return (title, message) for a notification type."""
    template = TEMPLATES[notification_type]
    return template["title"], template["message"].format(**template_vars)


async def notify(
    db: AsyncSession,
    user_id: UUID,
    notification_type: NotificationType,
    booking_id: Optional[UUID] = None,
    **template_vars,
) -> Optional[Notification]:
    """
    Add a notification inside a SAVEPOINT of the caller's transaction.
    Returns None when it could not be written; the outer transaction
    is unaffected in that case.
    """
    try:
        title, message = render(notification_type, **template_vars)
        async with db.begin_nested():
            notification = Notification(
                user_id=user_id,
                booking_id=booking_id,
                type=notification_type.value,
                title=title,
                message=message,
            )
            db.add(notification)
        return notification
    except Exception as e:
        logger.warning(f"Notification '{notification_type.value}' for user {user_id} not created: {e}")
        return None


def dispatch_emails(notifications: Iterable[Optional[Notification]]) -> None:
    """Queue email delivery for committed notifications. Best effort."""
    if not settings.NOTIFICATION_EMAILS_ENABLED:
        return
    from tasks.notification_tasks import send_notification_email

    for notification in notifications:
        if notification is None:
            continue
        try:
            send_notification_email.delay(str(notification.id))
        except Exception as e:
            logger.warning(f"Could not queue email for notification {notification.id}: {e}")
