"""
Celery Application Configuration

Tasks are triggered by an external driver; no beat schedule is defined here.
"""

from celery import Celery

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "retailrules",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # One rule-engine operation at a time per worker process
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.automation.*": {"queue": "maintenance"},
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"], related_name="automation")
