import sys
import threading
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.append(str(Path(__file__).resolve().parents[1]))

from grooming.core.clock import FixedClock
from grooming.db.base import Base
from grooming.db.models import NotificationRecord, ScheduledServiceRecord, SchedulingRecord  # noqa: F401
from grooming.domain.errors import ChannelDeliveryFailure
from grooming.domain.notification import NotificationType
from grooming.domain.notification_rules import NotificationRuleTable
from grooming.domain.scheduling import ScheduledService, Scheduling
from grooming.domain.time_slot import TimeSlot
from grooming.main import app
from grooming.repositories.notification_store import InMemoryNotificationStore
from grooming.repositories.scheduling_store import InMemorySchedulingStore
from grooming.services.channels import ChannelProvider, DeliveryOutcome
from grooming.services.notification_dispatcher import NotificationDispatcher
from grooming.services.scheduling_service import SchedulingService

TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

BASE_TIME = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)


class FakeProvider(ChannelProvider):
    """Records every send; can be told to fail, report delivery or block."""

    def __init__(
        self,
        channel: NotificationType,
        delivered: bool = False,
        failures: int = 0,
        error: Exception | None = None,
        release: threading.Event | None = None,
    ) -> None:
        self.channel = channel
        self.delivered = delivered
        self.failures_left = failures
        self.error = error
        self.release = release
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def send(self, notification, content):
        with self._lock:
            self.calls.append((notification.id, content))
            should_fail = self.error is not None or self.failures_left > 0
            if self.failures_left > 0:
                self.failures_left -= 1
        if self.release is not None:
            self.release.wait(5)
        if should_fail:
            raise self.error or ChannelDeliveryFailure(f"{self.channel.value} gateway unavailable")
        return DeliveryOutcome(delivered=self.delivered, provider_message_id=f"{self.channel.value}-{len(self.calls)}")


def make_scheduling(
    scheduling_id: str = "sched-1",
    start_at: datetime = datetime(2026, 3, 2, 10, 0, tzinfo=UTC),
    minutes: int = 60,
    prices: tuple[str, ...] = ("40.00",),
    **kwargs,
) -> Scheduling:
    services = [
        ScheduledService.create(
            id=f"{scheduling_id}-svc-{index}",
            service_id=f"service-{index}",
            name=f"Service {index}",
            unit_price=Decimal(price),
            duration_minutes=30,
        )
        for index, price in enumerate(prices)
    ]
    kwargs.setdefault("customer_id", "customer-1")
    kwargs.setdefault("pet_id", "pet-1")
    kwargs.setdefault("created_at", BASE_TIME)
    return Scheduling(
        id=scheduling_id,
        time_slot=TimeSlot.from_duration(start_at, minutes),
        services=services,
        **kwargs,
    )


@pytest.fixture(autouse=True)
def reset_database() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


@pytest.fixture()
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(BASE_TIME)


@pytest.fixture()
def providers() -> dict[NotificationType, FakeProvider]:
    return {channel: FakeProvider(channel) for channel in NotificationType}


@pytest.fixture()
def notification_store() -> InMemoryNotificationStore:
    return InMemoryNotificationStore()


@pytest.fixture()
def scheduling_store() -> InMemorySchedulingStore:
    return InMemorySchedulingStore()


@pytest.fixture()
def dispatcher(notification_store, providers, clock) -> NotificationDispatcher:
    return NotificationDispatcher(
        store=notification_store,
        rules=NotificationRuleTable.default(),
        providers=providers,
        clock=clock,
        channel_timeout_seconds=2,
    )


@pytest.fixture()
def workflow(scheduling_store, dispatcher, clock) -> SchedulingService:
    return SchedulingService(scheduling_store, dispatcher, clock=clock)


@pytest.fixture()
def client() -> TestClient:
    with TestClient(app) as test_client:
        yield test_client
