from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from grooming.domain.errors import (
    IllegalTransition,
    SchedulingConflict,
    SchedulingNotFound,
    TerminalStateViolation,
)
from grooming.domain.notification import NotificationStatus
from grooming.domain.notification_rules import NotificationRuleTable
from grooming.domain.scheduling import SchedulingStatus
from grooming.domain.time_slot import TimeSlot
from grooming.repositories.notification_store import InMemoryNotificationStore
from grooming.schemas.scheduling import SchedulingCreateRequest, ServiceLine
from grooming.services.notification_dispatcher import NotificationDispatcher
from grooming.services.scheduling_service import SchedulingService

TEN = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)


def _request(start_at: datetime = TEN, **kwargs) -> SchedulingCreateRequest:
    kwargs.setdefault(
        "services",
        [
            ServiceLine(service_id="bath", name="Bath", unit_price=Decimal("30.00"), duration_minutes=30),
            ServiceLine(service_id="trim", name="Trim", unit_price=Decimal("25.00"), duration_minutes=30),
        ],
    )
    return SchedulingCreateRequest(customer_id="customer-1", pet_id="pet-1", start_at=start_at, **kwargs)


def test_create_persists_and_sends_confirmation(workflow, scheduling_store, notification_store, providers):
    result = workflow.create_scheduling(_request(notes="nervous dog"))

    scheduling = result.scheduling
    assert scheduling.status is SchedulingStatus.SCHEDULED
    assert scheduling.time_slot == TimeSlot.from_duration(TEN, 60)
    assert scheduling.total_price == Decimal("55.00")
    assert scheduling_store.get(scheduling.id) == scheduling

    assert result.notification_sent
    notifications = notification_store.find_by_scheduling_id(scheduling.id)
    assert len(notifications) == 3
    assert {n.rule_key for n in notifications} == {"scheduling.confirmation"}
    assert {n.status for n in notifications} == {NotificationStatus.SENT}
    assert "nervous dog" in providers[notifications[0].type].calls[0][1]


def test_create_uses_explicit_end(workflow):
    result = workflow.create_scheduling(_request(end_at=TEN + timedelta(minutes=90)))

    assert result.scheduling.total_duration_minutes == 90


def test_overlapping_create_is_rejected_and_touching_is_accepted(workflow, scheduling_store):
    first = workflow.create_scheduling(_request(TEN)).scheduling

    with pytest.raises(SchedulingConflict) as exc_info:
        workflow.create_scheduling(_request(TEN + timedelta(minutes=30)))
    assert exc_info.value.conflicting_ids == [first.id]

    second = workflow.create_scheduling(_request(TEN + timedelta(hours=1))).scheduling
    assert second.time_slot.start_at == TEN + timedelta(hours=1)
    assert len(scheduling_store.find_by_customer("customer-1")) == 2


def test_cancelled_slot_can_be_booked_again(workflow):
    first = workflow.create_scheduling(_request()).scheduling
    workflow.cancel(first.id)

    again = workflow.create_scheduling(_request()).scheduling

    assert again.id != first.id


def test_cancel_sends_cancellation(workflow, notification_store):
    scheduling = workflow.create_scheduling(_request()).scheduling

    result = workflow.cancel(scheduling.id)

    assert result.scheduling.status is SchedulingStatus.CANCELLED
    keys = [n.rule_key for n in notification_store.find_by_scheduling_id(scheduling.id)]
    assert keys.count("scheduling.cancellation") == 3


def test_lifecycle_through_completion(workflow, clock):
    scheduling = workflow.create_scheduling(_request()).scheduling

    workflow.confirm(scheduling.id)
    clock.advance(timedelta(hours=2))
    workflow.start(scheduling.id)
    done = workflow.complete(scheduling.id)

    assert done.status is SchedulingStatus.COMPLETED
    assert done.updated_at == clock.now()
    with pytest.raises(TerminalStateViolation):
        workflow.cancel(scheduling.id)


def test_reschedule_moves_slot_and_notifies(workflow, notification_store):
    scheduling = workflow.create_scheduling(_request()).scheduling
    new_slot = TimeSlot.from_duration(TEN + timedelta(days=1), 60)

    result = workflow.reschedule(scheduling.id, new_slot)

    assert result.scheduling.time_slot == new_slot
    keys = {n.rule_key for n in notification_store.find_by_scheduling_id(scheduling.id)}
    assert "scheduling.rescheduled" in keys


def test_reschedule_into_taken_slot_is_rejected(workflow, scheduling_store):
    taken = workflow.create_scheduling(_request(TEN)).scheduling
    moving = workflow.create_scheduling(_request(TEN + timedelta(hours=2))).scheduling

    with pytest.raises(SchedulingConflict):
        workflow.reschedule(moving.id, TimeSlot.from_duration(TEN + timedelta(minutes=15), 60))

    assert scheduling_store.get(moving.id).time_slot.start_at == TEN + timedelta(hours=2)
    assert scheduling_store.get(taken.id).time_slot.start_at == TEN


def test_reschedule_own_slot_does_not_conflict_with_itself(workflow):
    scheduling = workflow.create_scheduling(_request()).scheduling

    result = workflow.reschedule(scheduling.id, TimeSlot.from_duration(TEN + timedelta(minutes=15), 60))

    assert result.scheduling.time_slot.start_at == TEN + timedelta(minutes=15)


def test_no_show_can_only_be_reopened(workflow):
    scheduling = workflow.create_scheduling(_request()).scheduling
    workflow.mark_no_show(scheduling.id)

    with pytest.raises(IllegalTransition):
        workflow.confirm(scheduling.id)
    with pytest.raises(IllegalTransition):
        workflow.reschedule(scheduling.id, TimeSlot.from_duration(TEN + timedelta(days=1), 60))

    reopened = workflow.reschedule_no_show(scheduling.id, TimeSlot.from_duration(TEN + timedelta(days=1), 60))

    assert reopened.scheduling.status is SchedulingStatus.SCHEDULED
    assert reopened.scheduling.time_slot.start_at == TEN + timedelta(days=1)


def test_reopening_no_show_into_taken_slot_keeps_it_no_show(workflow, scheduling_store):
    missed = workflow.create_scheduling(_request(TEN)).scheduling
    workflow.mark_no_show(missed.id)
    workflow.create_scheduling(_request(TEN))

    with pytest.raises(SchedulingConflict):
        workflow.reschedule_no_show(missed.id)

    assert scheduling_store.get(missed.id).status is SchedulingStatus.NO_SHOW


def test_update_services_recomputes_total(workflow):
    scheduling = workflow.create_scheduling(_request()).scheduling

    updated = workflow.update_services(
        scheduling.id,
        [ServiceLine(service_id="nails", name="Nails", unit_price=Decimal("12.50"), duration_minutes=15)],
    )

    assert updated.total_price == Decimal("12.50")
    assert [s.service_id for s in updated.services] == ["nails"]


def test_add_notes_persists(workflow, scheduling_store):
    scheduling = workflow.create_scheduling(_request()).scheduling

    workflow.add_notes(scheduling.id, "bring muzzle")

    assert scheduling_store.get(scheduling.id).notes == "bring muzzle"


def test_unknown_scheduling_raises_not_found(workflow):
    with pytest.raises(SchedulingNotFound):
        workflow.confirm("missing")


def test_notification_failure_does_not_undo_creation(workflow, scheduling_store, providers):
    for provider in providers.values():
        provider.error = RuntimeError("all gateways down")

    result = workflow.create_scheduling(_request())

    assert scheduling_store.get(result.scheduling.id).status is SchedulingStatus.SCHEDULED
    assert all(n.status is NotificationStatus.PENDING for n in result.dispatch.notifications)


class _BrokenNotificationStore(InMemoryNotificationStore):
    def create(self, notification):
        raise OperationalError("INSERT INTO notifications", {}, Exception("database is locked"))


def test_notification_store_outage_does_not_fail_the_workflow(scheduling_store, providers, clock):
    dispatcher = NotificationDispatcher(
        store=_BrokenNotificationStore(),
        rules=NotificationRuleTable.default(),
        providers=providers,
        clock=clock,
        channel_timeout_seconds=2,
    )
    workflow = SchedulingService(scheduling_store, dispatcher, clock=clock)

    created = workflow.create_scheduling(_request())
    cancelled = workflow.cancel(created.scheduling.id)

    assert created.dispatch is None
    assert not created.notification_sent
    assert cancelled.dispatch is None
    assert scheduling_store.get(created.scheduling.id).status is SchedulingStatus.CANCELLED
    assert all(provider.calls == [] for provider in providers.values())
