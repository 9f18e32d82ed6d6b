from datetime import timedelta

from celery import Celery

from grooming.core.config import settings

celery_app = Celery(
    "grooming",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["grooming.tasks.notifications", "grooming.tasks.reminders"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "process-pending-notifications": {
            "task": "notifications.process_pending",
            "schedule": timedelta(seconds=settings.notification_sweep_interval_seconds),
        },
        "enqueue-scheduling-reminders": {
            "task": "schedulings.enqueue_reminders",
            "schedule": timedelta(minutes=settings.celery_reminder_interval_minutes),
        },
    },
)
