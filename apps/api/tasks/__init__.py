"""
Celery app for assessment evaluation.

The API imports this package to enqueue; the worker (apps/worker/main.py)
imports it to execute. Both sides read broker and backend from settings.
"""
from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from core.config import settings
from core.logging import setup_logging

celery_app = Celery(
    "assessment_evaluation",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # Video frames make payloads large; keep one task per worker slot
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    # A batch of long videos can run for a while
    task_time_limit=20 * 60,
    task_soft_time_limit=15 * 60,
    result_expires=24 * 60 * 60,
)


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs):
    """Use the API's formatters in the worker instead of Celery's defaults."""
    setup_logging()


from . import assessment_tasks  # noqa: E402

__all__ = ["celery_app"]
