"""
Celery worker entry point.

Imports the Celery app and the assessment tasks from the API module.
Start with:

    celery -A main worker --concurrency=4
"""
import sys

# Add API directory to path so we can import tasks
sys.path.insert(0, '/api')

from tasks import celery_app  # noqa: E402

celery_app.autodiscover_tasks(['tasks'])


@celery_app.task(name="worker.health_check")
def health_check():
    """Liveness probe for the assessment worker."""
    return {"status": "ok", "tasks": sorted(n for n in celery_app.tasks if n.startswith("tasks."))}
