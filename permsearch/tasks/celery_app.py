"""
Celery Application
Background ACL maintenance
"""

from celery import Celery

from permsearch.core.config import settings

# Create Celery app
celery_app = Celery(
    "permsearch",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    task_time_limit=900,
    task_soft_time_limit=840,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=500,
    beat_schedule={
        "retry-failed-group-expansions": {
            "task": "permsearch.tasks.acl_tasks.retry_failed_groups_task",
            "schedule": float(settings.GROUP_RETRY_INTERVAL_SECONDS),
        },
    },
)

# Import tasks
from permsearch.tasks import acl_tasks  # noqa: E402,F401
