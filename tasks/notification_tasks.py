"""
tasks/notification_tasks.py
Celery tasks for email delivery of in-app notifications.

The in-app row is written by the request that caused the transition;
this task only mirrors it to the user's inbox via Resend. Safe to run twice.

Usage from a route (after commit):
    from tasks.notification_tasks import send_notification_email
    send_notification_email.delay(str(notification.id))
"""

import html
import logging
from uuid import UUID

import resend
from celery import Task
from pybreaker import CircuitBreakerError
from sqlalchemy import select

from config.settings import settings
from shared.utils.resilience import circuit_breaker_manager
from tasks.celery_app import celery_app, get_sync_session

logger = logging.getLogger(__name__)


# ── Base Task with DB session ──────────────────────────────────────────────────

class DatabaseTask(Task):
    """Base class that provides a synchronous DB session for tasks."""
    abstract = True

    def get_session(self):
        return get_sync_session()


# ── Delivery ───────────────────────────────────────────────────────────────────

def _send_email(to_email: str, subject: str, html_body: str) -> None:
    """Send transactional email via Resend. Raises on provider failure."""
    resend.api_key = settings.RESEND_API_KEY
    resend.Emails.send({
        "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>",
        "to": to_email,
        "subject": subject,
        "html": html_body,
    })


def render_email(title: str, message: str) -> str:
    link = f"{settings.FRONTEND_URL}/notifications"
    return (
        f"<h2>{html.escape(title)}</h2>"
        f"<p>{html.escape(message)}</p>"
        f'<p><a href="{link}">Open your notifications</a></p>'
    )


@celery_app.task(bind=True, base=DatabaseTask, max_retries=3, default_retry_delay=60)
def send_notification_email(self, notification_id: str):
    """Email a stored notification to its recipient, retrying with backoff."""
    from shared.models.models import Notification, User

    db = self.get_session()
    try:
        notification = db.execute(
            select(Notification).where(Notification.id == UUID(notification_id))
        ).scalar_one_or_none()
        if not notification:
            logger.error(f"send_notification_email: notification {notification_id} not found")
            return False

        user = db.execute(select(User).where(User.id == notification.user_id)).scalar_one_or_none()
        if not user or not user.is_active or not user.email:
            return False

        breaker = circuit_breaker_manager.get_breaker("email")
        breaker.call(
            _send_email,
            user.email,
            notification.title,
            render_email(notification.title, notification.message),
        )
        logger.info(f"Notification {notification_id} ({notification.type}) emailed to user {user.id}")
        return True

    except CircuitBreakerError as e:
        logger.warning(f"Email circuit open; deferring notification {notification_id}")
        raise self.retry(exc=e, countdown=300)
    except Exception as e:
        logger.exception(f"send_notification_email failed: {e}")
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))
    finally:
        db.close()
