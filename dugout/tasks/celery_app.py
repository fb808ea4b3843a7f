"""
Celery application for notification delivery and housekeeping.

Beat runs two periodic jobs: purging long-expired invitations and
retrying notifications whose delivery failed.
"""
import os

from celery import Celery
from celery.signals import after_setup_logger, after_setup_task_logger, task_postrun

from config.settings import Config

TASK_MODULES = ["dugout.tasks.notifications"]


def _beat_schedule(config):
    return {
        "purge-expired-invitations": {
            "task": "dugout.tasks.notifications.purge_expired_invitations_task",
            "schedule": float(config.INVITATION_PURGE_INTERVAL_SECONDS),
            "args": (config.INVITATION_PURGE_AFTER_DAYS,),
        },
        "redeliver-pending-notifications": {
            "task": "dugout.tasks.notifications.redeliver_pending_notifications_task",
            "schedule": float(config.NOTIFICATION_RETRY_INTERVAL_SECONDS),
        },
    }


def make_celery(app_name=__name__, config=None):
    """Build the Celery app from the base settings (or ``config`` when given)."""
    config = config or Config()
    app = Celery(
        app_name,
        broker=config.CELERY_BROKER_URL,
        backend=config.CELERY_RESULT_BACKEND,
        include=TASK_MODULES,
    )
    app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        broker_connection_retry_on_startup=True,
        # Notification tasks are idempotent, so a worker crash may safely replay them
        task_acks_late=True,
        beat_schedule=_beat_schedule(config),
    )
    return app


celery_app = make_celery()


def _instance_path() -> str:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
    return os.environ.get("DUGOUT_INSTANCE_PATH") or os.path.join(repo_root, "instance")


@after_setup_logger.connect
@after_setup_task_logger.connect
def _setup_worker_logging(logger, *args, **kwargs):  # pragma: no cover - logging init
    from dugout.structured_logging import configure_structlog_celery

    configure_structlog_celery(_instance_path())


@task_postrun.connect
def _remove_db_session(*args, **kwargs):  # pragma: no cover - simple guard
    """Return the task's connection to the pool."""
    from dugout.models import db

    try:
        db.session.remove()
    except RuntimeError:
        # Task ran without an application context
        pass
