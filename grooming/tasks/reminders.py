import logging
from datetime import datetime, timedelta

from grooming.core.clock import system_clock
from grooming.core.config import settings
from grooming.db.session import SessionLocal
from grooming.domain.scheduling import SchedulingStatus
from grooming.domain.time_slot import coerce_instant
from grooming.repositories.notification_store import NotificationStore, SqlAlchemyNotificationStore
from grooming.repositories.scheduling_store import SchedulingStore, SqlAlchemySchedulingStore
from grooming.services.scheduling_service import REMINDER_KEY, SchedulingService
from grooming.tasks.celery_app import celery_app
from grooming.tasks.notifications import build_dispatcher

logger = logging.getLogger(__name__)

REMINDABLE_STATUSES = (SchedulingStatus.SCHEDULED, SchedulingStatus.CONFIRMED)


def enqueue_upcoming_reminders(
    scheduling_store: SchedulingStore,
    notification_store: NotificationStore,
    workflow: SchedulingService,
    now: datetime,
) -> int:
    """Dispatch one reminder per upcoming appointment inside the lookahead window."""
    current_time = coerce_instant(now, field_name="now")
    reminder_until = current_time + timedelta(minutes=settings.reminder_lookahead_minutes)

    # appointments that start and end inside the window; the window slides with every run
    upcoming = [
        scheduling
        for status in REMINDABLE_STATUSES
        for scheduling in scheduling_store.find_by_period(current_time, reminder_until, status=status)
    ]

    dispatched = 0
    for scheduling in upcoming:
        already_reminded = any(
            notification.rule_key == REMINDER_KEY
            for notification in notification_store.find_by_scheduling_id(scheduling.id)
        )
        if already_reminded:
            continue
        if workflow.send_reminder(scheduling) is not None:
            dispatched += 1

    logger.info("reminders_enqueued candidates=%s dispatched=%s", len(upcoming), dispatched)
    return dispatched


@celery_app.task(name="schedulings.enqueue_reminders")
def enqueue_reminders_task() -> dict[str, int]:
    db = SessionLocal()
    try:
        scheduling_store = SqlAlchemySchedulingStore(db)
        workflow = SchedulingService(scheduling_store, build_dispatcher(db))
        dispatched = enqueue_upcoming_reminders(
            scheduling_store=scheduling_store,
            notification_store=SqlAlchemyNotificationStore(db),
            workflow=workflow,
            now=system_clock.now(),
        )
        return {"reminded": dispatched}
    finally:
        db.close()
