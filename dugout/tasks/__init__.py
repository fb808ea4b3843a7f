"""Background tasks (Celery)."""
# Importing the app makes it current, so shared tasks queue onto its broker
from dugout.tasks.celery_app import celery_app  # noqa: F401
