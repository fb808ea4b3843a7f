"""
Celery tasks for notification delivery and invitation housekeeping.

Delivery is queued by :func:`dugout.notifications.dispatch`; the other two
tasks run from Celery Beat.
"""
from datetime import timedelta

import structlog
from celery import shared_task

from dugout import create_app
from dugout import invitations as workflow
from dugout import notifications
from dugout.models import db

logger = structlog.get_logger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def deliver_notification_task(self, event_id: int):
    """
    Deliver one outbox event.

    A failed send is retried a few times; afterwards the row stays
    undelivered and the periodic sweep picks it up again.

    Args:
        event_id: Primary key of the NotificationEvent

    Returns:
        dict: Delivery outcome
    """
    app = create_app()
    with app.app_context():
        try:
            delivered = notifications.deliver_notification(event_id)
        except Exception as e:
            db.session.rollback()
            logger.error(
                "notification_delivery_failed",
                event_id=event_id,
                error=str(e),
                exc_info=True,
            )
            raise self.retry(exc=e)
        if not delivered:
            logger.warning("notification_not_delivered", event_id=event_id)
        return {"event_id": event_id, "delivered": delivered}


@shared_task
def redeliver_pending_notifications_task(limit: int = 100):
    """Retry outbox rows that were never delivered."""
    app = create_app()
    with app.app_context():
        max_attempts = app.config.get("NOTIFICATION_MAX_ATTEMPTS", 5)
        pending = notifications.undelivered_events(limit=limit, max_attempts=max_attempts)
        delivered = 0
        for event in pending:
            try:
                if notifications.deliver_notification(event.id):
                    delivered += 1
            except Exception as e:
                db.session.rollback()
                logger.error(
                    "notification_redelivery_failed",
                    event_id=event.id,
                    error=str(e),
                    exc_info=True,
                )
        logger.info(
            "notification_redelivery_complete", attempted=len(pending), delivered=delivered
        )
        return {"attempted": len(pending), "delivered": delivered}


@shared_task(bind=True)
def purge_expired_invitations_task(self, retention_days: int = 90):
    """
    Delete pending invitations that expired more than ``retention_days`` ago.

    Args:
        retention_days: Days an expired invitation is kept before removal

    Returns:
        dict: Cleanup statistics
    """
    app = create_app()
    with app.app_context():
        try:
            deleted = workflow.purge_expired_invitations(timedelta(days=retention_days))
        except Exception as e:
            db.session.rollback()
            logger.error(
                "invitation_purge_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise
        return {"deleted": deleted, "retention_days": retention_days}
