"""Celery application configuration."""
from celery import Celery

from app.config import Settings

# Redis transport priorities: 0 is consumed first, 9 last
PRIORITY_STEPS = list(range(10))
DEFAULT_PRIORITY = 5


def create_celery_app(settings: Settings, name: str = "employee_importer") -> Celery:
    """
    Build a Celery app for the upload pipeline.

    Late acks plus reject-on-worker-lost keep a job in Redis until its
    handler returns, so work survives a worker restart.
    """
    celery_app = Celery(
        name,
        broker=settings.redis_url,
        backend=settings.redis_url,
    )

    celery_app.conf.update(
        task_track_started=True,
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        task_default_priority=DEFAULT_PRIORITY,
        worker_prefetch_multiplier=1,
        result_expires=settings.queue_retention_seconds,
        broker_transport_options={
            "priority_steps": PRIORITY_STEPS,
            "sep": ":",
            "queue_order_strategy": "priority",
            # Unacked jobs are redelivered after this long
            "visibility_timeout": 3600,
        },
    )
    return celery_app
