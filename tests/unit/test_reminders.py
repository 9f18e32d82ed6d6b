from datetime import timedelta

from conftest import BASE_TIME, make_scheduling
from grooming.domain.notification import NotificationStatus
from grooming.tasks.reminders import enqueue_upcoming_reminders


def test_reminders_go_to_upcoming_active_schedulings_once(scheduling_store, notification_store, workflow, clock):
    soon = scheduling_store.create(make_scheduling("soon", start_at=BASE_TIME + timedelta(hours=2)))
    confirmed = make_scheduling("confirmed", start_at=BASE_TIME + timedelta(hours=5))
    confirmed.confirm(BASE_TIME)
    scheduling_store.create(confirmed)
    scheduling_store.create(make_scheduling("far", start_at=BASE_TIME + timedelta(days=3)))
    cancelled = make_scheduling("cancelled", start_at=BASE_TIME + timedelta(hours=8))
    cancelled.cancel(BASE_TIME)
    scheduling_store.create(cancelled)

    dispatched = enqueue_upcoming_reminders(scheduling_store, notification_store, workflow, now=clock.now())

    assert dispatched == 2
    reminded = {n.scheduling_id for n in notification_store.find_pending() if n.rule_key == "scheduling.reminder"}
    assert reminded == {soon.id, "confirmed"}

    assert enqueue_upcoming_reminders(scheduling_store, notification_store, workflow, now=clock.now()) == 0


def test_reminders_are_queued_for_the_sweep(scheduling_store, notification_store, workflow, dispatcher, clock):
    scheduling_store.create(make_scheduling("soon", start_at=BASE_TIME + timedelta(hours=1)))

    enqueue_upcoming_reminders(scheduling_store, notification_store, workflow, now=clock.now())
    dispatcher.process_pending()

    statuses = {n.status for n in notification_store.find_by_scheduling_id("soon")}
    assert statuses == {NotificationStatus.SENT}
