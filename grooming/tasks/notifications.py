from sqlalchemy.orm import Session

from grooming.core.config import settings
from grooming.db.session import SessionLocal
from grooming.domain.notification_rules import NotificationRuleTable
from grooming.repositories.notification_store import SqlAlchemyNotificationStore
from grooming.services.channels import logging_providers
from grooming.services.notification_dispatcher import NotificationDispatcher
from grooming.tasks.celery_app import celery_app

RULES = NotificationRuleTable.default()


def build_dispatcher(db: Session) -> NotificationDispatcher:
    return NotificationDispatcher(
        store=SqlAlchemyNotificationStore(db),
        rules=RULES,
        providers=logging_providers(),
        channel_timeout_seconds=settings.notification_channel_timeout_seconds,
    )


@celery_app.task(name="notifications.process_pending")
def process_pending_notifications_task() -> dict[str, int]:
    db = SessionLocal()
    try:
        result = build_dispatcher(db).process_pending(limit=settings.notification_sweep_batch_size)
        return result.as_dict()
    finally:
        db.close()
