"""
Tests for background tasks.

Task bodies are run directly with ``create_app`` patched to return the test
application; Celery scheduling itself is not exercised.
"""
from datetime import timedelta
from unittest.mock import patch

import pytest
from conftest import OWNER_ID, REVIEWER_EMAIL

from dugout import mailer
from dugout.invitations import create_invitation
from dugout.models import Invitation, NotificationEvent, db, utcnow
from dugout.tasks.celery_app import celery_app
from dugout.tasks.notifications import (
    deliver_notification_task,
    purge_expired_invitations_task,
    redeliver_pending_notifications_task,
)


@pytest.fixture()
def task_app(app):
    with patch("dugout.tasks.notifications.create_app", return_value=app):
        yield app


@pytest.fixture()
def undelivered_event_id(ctx, folder_id):
    """An invitation notice whose first delivery failed (email disabled)."""
    create_invitation(OWNER_ID, folder_id, REVIEWER_EMAIL)
    return db.session.query(NotificationEvent).one().id


class TestNotificationTasks:
    """Test delivery and redelivery tasks."""

    def test_deliver_notification(self, task_app, undelivered_event_id):
        with patch.object(mailer, "send_email", return_value=True):
            result = deliver_notification_task.run(undelivered_event_id)
        assert result == {"event_id": undelivered_event_id, "delivered": True}
        db.session.expire_all()
        assert db.session.get(NotificationEvent, undelivered_event_id).delivered_at is not None

    def test_redelivery_sweep(self, task_app, undelivered_event_id):
        with patch.object(mailer, "send_email", return_value=True) as send:
            result = redeliver_pending_notifications_task.run()
        assert result == {"attempted": 1, "delivered": 1}
        assert send.call_count == 1

    def test_redelivery_gives_up_after_max_attempts(self, task_app, undelivered_event_id):
        task_app.config["NOTIFICATION_MAX_ATTEMPTS"] = 1
        with patch.object(mailer, "send_email") as send:
            result = redeliver_pending_notifications_task.run()
        assert result == {"attempted": 0, "delivered": 0}
        send.assert_not_called()


class TestInvitationPurge:
    """Test the expired invitation purge."""

    def test_purges_only_long_expired_pending(self, task_app, ctx, folder_id):
        old = create_invitation(OWNER_ID, folder_id, REVIEWER_EMAIL)
        fresh = create_invitation(OWNER_ID, folder_id, "assistant@example.com")
        old_id, fresh_id = old.id, fresh.id
        old.expires_at = utcnow() - timedelta(days=100)
        db.session.commit()

        result = purge_expired_invitations_task.run(retention_days=90)

        assert result == {"deleted": 1, "retention_days": 90}
        db.session.expire_all()
        assert db.session.get(Invitation, old_id) is None
        assert db.session.get(Invitation, fresh_id) is not None


class TestSchedule:
    def test_beat_schedule(self):
        schedule = celery_app.conf.beat_schedule
        assert schedule["purge-expired-invitations"]["task"] == (
            "dugout.tasks.notifications.purge_expired_invitations_task"
        )
        assert schedule["redeliver-pending-notifications"]["task"] == (
            "dugout.tasks.notifications.redeliver_pending_notifications_task"
        )
