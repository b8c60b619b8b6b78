from celery import Celery

from app.config import settings

celery_app = Celery(
    "sharegate",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.tasks.events"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        # Safety net for events whose post-commit dispatch call was lost.
        "drain-outbox": {
            "task": "app.tasks.events.dispatch_outbox",
            "schedule": float(settings.outbox_drain_interval_seconds),
        },
    },
)
