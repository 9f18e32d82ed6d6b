import logging
from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

from grooming.core.clock import Clock, system_clock
from grooming.domain.scheduling import ScheduledService, Scheduling, SchedulingStatus
from grooming.domain.time_slot import TimeSlot
from grooming.repositories.scheduling_store import SchedulingStore, conflict_error
from grooming.schemas.notification import NotificationRequest
from grooming.schemas.scheduling import SchedulingCreateRequest, ServiceLine
from grooming.services.messages import render_scheduling_message
from grooming.services.notification_dispatcher import DispatchResult, NotificationDispatcher

logger = logging.getLogger(__name__)

CONFIRMATION_KEY = "scheduling.confirmation"
CANCELLATION_KEY = "scheduling.cancellation"
RESCHEDULED_KEY = "scheduling.rescheduled"
REMINDER_KEY = "scheduling.reminder"


@dataclass
class WorkflowResult:
    scheduling: Scheduling
    dispatch: DispatchResult | None = None

    @property
    def notification_sent(self) -> bool:
        return self.dispatch is not None and not self.dispatch.suppressed


def build_services(lines: list[ServiceLine]) -> list[ScheduledService]:
    return [
        ScheduledService.create(
            id=str(uuid4()),
            service_id=line.service_id,
            name=line.name,
            unit_price=line.unit_price,
            duration_minutes=line.duration_minutes,
        )
        for line in lines
    ]


class SchedulingService:
    """Appointment workflows. Each one persists first, then notifies.

    A notification problem never undoes a persisted change: it is logged and
    the result carries no dispatch.
    """

    def __init__(
        self,
        store: SchedulingStore,
        dispatcher: NotificationDispatcher,
        clock: Clock = system_clock,
        renderer: Callable[[str, Scheduling], str] = render_scheduling_message,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._clock = clock
        self._renderer = renderer

    def create_scheduling(self, request: SchedulingCreateRequest) -> WorkflowResult:
        if request.end_at is not None:
            time_slot = TimeSlot.create(request.start_at, request.end_at)
        else:
            time_slot = TimeSlot.from_duration(request.start_at, request.total_duration_minutes)

        conflicts = self._store.find_conflicts(time_slot)
        if conflicts:
            raise conflict_error(time_slot, conflicts)

        now = self._clock.now()
        scheduling = Scheduling(
            id=str(uuid4()),
            time_slot=time_slot,
            customer_id=request.customer_id,
            pet_id=request.pet_id,
            services=build_services(request.services),
            notes=request.notes,
            created_at=now,
        )
        scheduling = self._store.create(scheduling)
        logger.info(
            "scheduling_created scheduling_id=%s customer_id=%s pet_id=%s slot=%s total_price=%s",
            scheduling.id,
            scheduling.customer_id,
            scheduling.pet_id,
            scheduling.time_slot,
            scheduling.total_price,
        )
        return WorkflowResult(scheduling, self._notify(CONFIRMATION_KEY, scheduling))

    def confirm(self, scheduling_id: str) -> Scheduling:
        return self._change_status(scheduling_id, SchedulingStatus.CONFIRMED)

    def start(self, scheduling_id: str) -> Scheduling:
        return self._change_status(scheduling_id, SchedulingStatus.IN_PROGRESS)

    def complete(self, scheduling_id: str) -> Scheduling:
        return self._change_status(scheduling_id, SchedulingStatus.COMPLETED)

    def mark_no_show(self, scheduling_id: str) -> Scheduling:
        return self._change_status(scheduling_id, SchedulingStatus.NO_SHOW)

    def cancel(self, scheduling_id: str) -> WorkflowResult:
        scheduling = self._change_status(scheduling_id, SchedulingStatus.CANCELLED)
        return WorkflowResult(scheduling, self._notify(CANCELLATION_KEY, scheduling))

    def reschedule(self, scheduling_id: str, time_slot: TimeSlot) -> WorkflowResult:
        scheduling = self._store.update_time_slot(scheduling_id, time_slot, self._clock.now())
        logger.info("scheduling_rescheduled scheduling_id=%s slot=%s", scheduling.id, scheduling.time_slot)
        return WorkflowResult(scheduling, self._notify(RESCHEDULED_KEY, scheduling))

    def reschedule_no_show(self, scheduling_id: str, time_slot: TimeSlot | None = None) -> WorkflowResult:
        """Bring a no-show back to SCHEDULED, optionally at a new time.

        The slot change and the reopen are saved together, so a conflicting
        slot leaves the scheduling a no-show.
        """
        scheduling = self._store.get(scheduling_id)
        now = self._clock.now()
        scheduling.reopen(now)
        if time_slot is not None:
            scheduling.update_time_slot(time_slot, now)
        scheduling = self._store.save(scheduling)
        logger.info("scheduling_reopened scheduling_id=%s slot=%s", scheduling.id, scheduling.time_slot)
        return WorkflowResult(scheduling, self._notify(RESCHEDULED_KEY, scheduling))

    def update_services(self, scheduling_id: str, lines: list[ServiceLine]) -> Scheduling:
        scheduling = self._store.get(scheduling_id)
        scheduling.update_services(build_services(lines), self._clock.now())
        scheduling = self._store.save(scheduling)
        logger.info(
            "scheduling_services_updated scheduling_id=%s services=%s total_price=%s",
            scheduling.id,
            len(scheduling.services),
            scheduling.total_price,
        )
        return scheduling

    def add_notes(self, scheduling_id: str, notes: str) -> Scheduling:
        scheduling = self._store.get(scheduling_id)
        scheduling.add_notes(notes, self._clock.now())
        return self._store.save(scheduling)

    def send_reminder(self, scheduling: Scheduling) -> DispatchResult | None:
        return self._notify(REMINDER_KEY, scheduling)

    def _change_status(self, scheduling_id: str, status: SchedulingStatus) -> Scheduling:
        scheduling = self._store.update_status(scheduling_id, status, self._clock.now())
        logger.info("scheduling_status_changed scheduling_id=%s status=%s", scheduling.id, scheduling.status.value)
        return scheduling

    def _notify(self, type_key: str, scheduling: Scheduling) -> DispatchResult | None:
        request = NotificationRequest(
            type_key=type_key,
            scheduling_id=scheduling.id,
            content=self._renderer(type_key, scheduling),
        )
        try:
            return self._dispatcher.dispatch(request)
        except Exception:
            logger.exception("notification_dispatch_failed type_key=%s scheduling_id=%s", type_key, scheduling.id)
            return None
