from datetime import timedelta

import pytest

from conftest import BASE_TIME, make_scheduling
from grooming.domain.errors import ConcurrentModification, IllegalTransition, TerminalStateViolation
from grooming.domain.notification import Notification, NotificationStatus, NotificationType
from grooming.domain.scheduling import SchedulingStatus
from grooming.repositories.notification_store import InMemoryNotificationStore

LATER = BASE_TIME + timedelta(minutes=5)


def test_versions_start_at_one_and_grow_with_each_save(scheduling_store):
    created = scheduling_store.create(make_scheduling("s-1"))
    confirmed = scheduling_store.update_status("s-1", SchedulingStatus.CONFIRMED, LATER)

    assert created.version == 1
    assert confirmed.version == 2
    assert scheduling_store.get("s-1").version == 2


def test_stale_copy_cannot_revive_a_cancelled_scheduling(scheduling_store):
    scheduling_store.create(make_scheduling("s-1"))
    stale = scheduling_store.get("s-1")
    scheduling_store.update_status("s-1", SchedulingStatus.CANCELLED, LATER)

    stale.confirm(LATER)
    with pytest.raises(ConcurrentModification):
        scheduling_store.save(stale)

    assert scheduling_store.get("s-1").status is SchedulingStatus.CANCELLED


def test_second_of_two_overlapping_updates_is_rejected(scheduling_store):
    scheduling_store.create(make_scheduling("s-1"))
    first = scheduling_store.get("s-1")
    second = scheduling_store.get("s-1")

    first.add_notes("bring muzzle", LATER)
    scheduling_store.save(first)
    second.add_notes("prefers mornings", LATER)

    with pytest.raises(ConcurrentModification):
        scheduling_store.save(second)
    assert scheduling_store.get("s-1").notes == "bring muzzle"


def test_terminal_scheduling_is_never_overwritten(scheduling_store):
    scheduling_store.create(make_scheduling("s-1"))
    completed = scheduling_store.update_status("s-1", SchedulingStatus.IN_PROGRESS, LATER)
    completed.complete(LATER)
    completed = scheduling_store.save(completed)

    forged = make_scheduling("s-1", version=completed.version)
    with pytest.raises(TerminalStateViolation):
        scheduling_store.save(forged)
    assert scheduling_store.get("s-1").status is SchedulingStatus.COMPLETED


def test_save_rejects_status_jump_outside_the_transition_table(scheduling_store):
    scheduling_store.create(make_scheduling("s-1"))
    no_show = scheduling_store.update_status("s-1", SchedulingStatus.NO_SHOW, LATER)

    forged = make_scheduling("s-1", status=SchedulingStatus.CONFIRMED, version=no_show.version)
    with pytest.raises(IllegalTransition):
        scheduling_store.save(forged)
    assert scheduling_store.get("s-1").status is SchedulingStatus.NO_SHOW


def _pending(notification_id: str = "n-1") -> Notification:
    return Notification(
        id=notification_id,
        type=NotificationType.EMAIL,
        content="See you tomorrow",
        scheduling_id="s-1",
        created_at=BASE_TIME,
    )


def test_only_one_claimant_holds_a_pending_notification():
    store = InMemoryNotificationStore()
    store.create(_pending())

    assert store.claim("n-1", "worker-a", BASE_TIME, 60) is not None
    assert store.claim("n-1", "worker-b", BASE_TIME + timedelta(seconds=59), 60) is None
    assert store.claim("n-1", "worker-b", BASE_TIME + timedelta(seconds=60), 60) is not None


def test_saving_releases_the_claim_and_sent_notifications_cannot_be_claimed():
    store = InMemoryNotificationStore()
    store.create(_pending())
    claimed = store.claim("n-1", "worker-a", BASE_TIME, 60)

    store.save(claimed)
    assert store.claim("n-1", "worker-b", BASE_TIME, 60) is not None

    store.mark_as_sent("n-1", BASE_TIME)
    assert store.claim("n-1", "worker-c", BASE_TIME + timedelta(hours=1), 60) is None
    assert store.get("n-1").status is NotificationStatus.SENT
