import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

import pytest

from conftest import make_scheduling
from grooming.domain.errors import SchedulingConflict
from grooming.domain.notification import NotificationType
from grooming.repositories.scheduling_store import InMemorySchedulingStore
from grooming.schemas.notification import NotificationRequest

TEN = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)


@pytest.mark.concurrent
def test_parallel_overlapping_creates_only_one_succeeds():
    store = InMemorySchedulingStore()
    attempts = 8
    barrier = threading.Barrier(attempts)

    def attempt(index: int) -> str:
        scheduling = make_scheduling(f"s-{index}", start_at=TEN + timedelta(minutes=index))
        barrier.wait()
        try:
            store.create(scheduling)
            return "created"
        except SchedulingConflict:
            return "conflict"

    with ThreadPoolExecutor(max_workers=attempts) as pool:
        results = list(pool.map(attempt, range(attempts)))

    assert results.count("created") == 1
    assert results.count("conflict") == attempts - 1
    assert len(store.find_conflicts(make_scheduling("probe", start_at=TEN).time_slot)) == 1


@pytest.mark.concurrent
def test_parallel_disjoint_creates_all_succeed():
    store = InMemorySchedulingStore()

    def attempt(index: int) -> None:
        store.create(make_scheduling(f"s-{index}", start_at=TEN + timedelta(hours=index)))

    with ThreadPoolExecutor(max_workers=6) as pool:
        list(pool.map(attempt, range(6)))

    assert len(store.find_by_customer("customer-1")) == 6


@pytest.mark.concurrent
def test_parallel_sweeps_send_each_notification_once(dispatcher, providers):
    for index in range(5):
        dispatcher.dispatch(NotificationRequest(type_key="scheduling.reminder", scheduling_id=f"s-{index}", content="hi"))

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(lambda _: dispatcher.process_pending(limit=50), range(4)))

    sent_ids = [call[0] for call in providers[NotificationType.EMAIL].calls]
    assert len(sent_ids) == len(set(sent_ids)) == 5
