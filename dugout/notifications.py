"""
Out-of-band notifications for invitations and access revocations.

Events are written to the ``notification_events`` outbox after the state
change that triggered them has committed, then handed to a delivery
backend chosen by ``NOTIFICATION_DELIVERY``:

- ``celery``: queue :func:`dugout.tasks.notifications.deliver_notification_task`
- ``inline``: deliver in-process (development and tests)
- ``disabled``: keep the outbox row only

Enqueueing is fire-and-forget. Any failure here is logged and swallowed so
a revocation or invitation never rolls back because a notice could not be
sent. Every event carries its context denormalized so delivery needs no
joins and still works after the recipient's or sender's account is gone.
"""

import structlog
from flask import current_app
from sqlalchemy import select

from dugout import mailer
from dugout.error_utils import safe_log_error
from dugout.models import NotificationEvent, NotificationKind, db, utcnow

logger = structlog.get_logger(__name__)


def _enqueue(
    kind: NotificationKind,
    recipient_contact: str | None,
    context: dict,
    recipient_id: str | None = None,
) -> NotificationEvent | None:
    """Persist an outbox row and dispatch it. Never raises."""
    try:
        event = NotificationEvent(
            kind=kind,
            recipient_id=recipient_id,
            recipient_contact=recipient_contact,
            context=context,
        )
        db.session.add(event)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        safe_log_error(
            logger,
            "notification_enqueue_failed",
            exc_info=e,
            kind=kind.value,
            recipient_id=recipient_id,
        )
        return None

    logger.info(
        "notification_enqueued",
        event_id=event.id,
        kind=kind.value,
        recipient_id=recipient_id,
    )
    dispatch(event.id)
    return event


def dispatch(event_id: int) -> None:
    """Hand an outbox row to the configured delivery backend. Never raises."""
    mode = current_app.config.get("NOTIFICATION_DELIVERY", "celery")
    try:
        if mode == "celery":
            from dugout.tasks.notifications import deliver_notification_task

            deliver_notification_task.delay(event_id)
        elif mode == "inline":
            deliver_notification(event_id)
        else:
            logger.debug("notification_delivery_disabled", event_id=event_id)
    except Exception as e:
        db.session.rollback()
        safe_log_error(
            logger, "notification_dispatch_failed", exc_info=e, event_id=event_id, mode=mode
        )


def deliver_notification(event_id: int) -> bool:
    """
    Deliver one outbox event by email and record the outcome on the row.

    Args:
        event_id: Primary key of the NotificationEvent

    Returns:
        bool: True if the event is (now or already) delivered
    """
    event = db.session.get(NotificationEvent, event_id)
    if event is None:
        logger.warning("notification_event_missing", event_id=event_id)
        return False
    if event.delivered_at is not None:
        return True

    ctx = event.context or {}
    event.attempts = (event.attempts or 0) + 1
    if not event.recipient_contact:
        sent = False
        event.last_error = "no recipient contact"
    elif event.kind == NotificationKind.INVITATION_SENT:
        sent = mailer.send_invitation_email(
            event.recipient_contact,
            folder_name=ctx.get("folder_name", ""),
            owner_name=ctx.get("owner_name", ""),
            invitation_id=ctx.get("invitation_id", ""),
            expires_at=ctx.get("expires_at", ""),
        )
    else:
        sent = mailer.send_access_revoked_email(
            event.recipient_contact,
            folder_name=ctx.get("folder_name", ""),
            owner_name=ctx.get("owner_name", ""),
        )

    if sent:
        event.delivered_at = utcnow()
        event.last_error = None
    elif event.recipient_contact:
        event.last_error = "email delivery failed"
    db.session.commit()

    logger.info(
        "notification_delivery_attempted",
        event_id=event.id,
        kind=event.kind.value,
        delivered=sent,
        attempts=event.attempts,
    )
    return sent


def notify_invitation_sent(invitation) -> NotificationEvent | None:
    """Queue the invitation email for a freshly created invitation."""
    return _enqueue(
        NotificationKind.INVITATION_SENT,
        invitation.reviewer_contact,
        {
            "invitation_id": invitation.id,
            "folder_id": invitation.folder_id,
            "folder_name": invitation.folder_name,
            "owner_id": invitation.owner_id,
            "owner_name": invitation.owner_name,
            "expires_at": invitation.expires_at.isoformat(),
        },
    )


def notify_access_revoked(
    folder_id: str,
    folder_name: str,
    owner_id: str,
    owner_name: str,
    reviewer_id: str,
    reviewer_contact: str | None,
) -> NotificationEvent | None:
    """Queue a revocation notice with all context denormalized onto the event."""
    return _enqueue(
        NotificationKind.ACCESS_REVOKED,
        reviewer_contact,
        {
            "folder_id": folder_id,
            "folder_name": folder_name,
            "owner_id": owner_id,
            "owner_name": owner_name,
            "reviewer_id": reviewer_id,
            "revoked_at": utcnow().isoformat(),
        },
        recipient_id=reviewer_id,
    )


def list_events(recipient_id: str | None = None, kind: NotificationKind | None = None):
    """Outbox rows, newest first, optionally filtered."""
    stmt = select(NotificationEvent)
    if recipient_id is not None:
        stmt = stmt.where(NotificationEvent.recipient_id == recipient_id)
    if kind is not None:
        stmt = stmt.where(NotificationEvent.kind == kind)
    stmt = stmt.order_by(NotificationEvent.created_at.desc(), NotificationEvent.id.desc())
    return list(db.session.execute(stmt).scalars())


def undelivered_events(limit: int = 100, max_attempts: int | None = None):
    """Outbox rows never delivered, oldest first (for the retry sweep)."""
    stmt = select(NotificationEvent).where(NotificationEvent.delivered_at.is_(None))
    if max_attempts is not None:
        stmt = stmt.where(NotificationEvent.attempts < max_attempts)
    return list(
        db.session.execute(
            stmt.order_by(NotificationEvent.created_at.asc()).limit(limit)
        ).scalars()
    )
