import copy
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from grooming.domain.errors import IllegalTransition, TerminalStateViolation, ValidationError
from grooming.domain.time_slot import TimeSlot, coerce_instant, validation_message


class SchedulingStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


ALLOWED_TRANSITIONS: dict[SchedulingStatus, frozenset[SchedulingStatus]] = {
    SchedulingStatus.SCHEDULED: frozenset(
        {
            SchedulingStatus.CONFIRMED,
            SchedulingStatus.IN_PROGRESS,
            SchedulingStatus.CANCELLED,
            SchedulingStatus.NO_SHOW,
        }
    ),
    SchedulingStatus.CONFIRMED: frozenset(
        {
            SchedulingStatus.IN_PROGRESS,
            SchedulingStatus.CANCELLED,
            SchedulingStatus.NO_SHOW,
        }
    ),
    SchedulingStatus.IN_PROGRESS: frozenset({SchedulingStatus.COMPLETED, SchedulingStatus.CANCELLED}),
    SchedulingStatus.NO_SHOW: frozenset({SchedulingStatus.SCHEDULED}),
    SchedulingStatus.COMPLETED: frozenset(),
    SchedulingStatus.CANCELLED: frozenset(),
}

_unmapped = set(SchedulingStatus) - set(ALLOWED_TRANSITIONS)
if _unmapped:
    raise RuntimeError(f"Scheduling statuses without transition rules: {sorted(s.value for s in _unmapped)}")

TERMINAL_STATUSES = frozenset({SchedulingStatus.COMPLETED, SchedulingStatus.CANCELLED})
# statuses that still hold their time slot
ACTIVE_STATUSES = frozenset(
    {SchedulingStatus.SCHEDULED, SchedulingStatus.CONFIRMED, SchedulingStatus.IN_PROGRESS}
)
EDIT_LOCKED_STATUSES = TERMINAL_STATUSES | {SchedulingStatus.NO_SHOW}


def coerce_status(value: SchedulingStatus | str) -> SchedulingStatus:
    try:
        return SchedulingStatus(value)
    except ValueError:
        allowed = ", ".join(status.value for status in SchedulingStatus)
        raise ValidationError(f"invalid scheduling status {value!r}; expected one of: {allowed}") from None


class ScheduledService(BaseModel):
    """Priced service line owned by a single scheduling."""

    id: str = Field(min_length=1)
    service_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    unit_price: Decimal = Field(ge=0)
    duration_minutes: int = Field(gt=0)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def create(
        cls,
        id: str,
        service_id: str,
        name: str,
        unit_price: Decimal | str | int,
        duration_minutes: int,
    ) -> "ScheduledService":
        try:
            return cls(
                id=id,
                service_id=service_id,
                name=name,
                unit_price=unit_price,
                duration_minutes=duration_minutes,
            )
        except pydantic.ValidationError as exc:
            raise ValidationError(f"invalid scheduled service: {validation_message(exc)}") from None


def _validated_services(services: Iterable[ScheduledService]) -> tuple[ScheduledService, ...]:
    if services is None or isinstance(services, (str, bytes)):
        raise ValidationError("services must be a list of ScheduledService")
    items = tuple(services)
    if not items:
        raise ValidationError("at least one service must be scheduled")
    for item in items:
        if not isinstance(item, ScheduledService):
            raise ValidationError(f"expected ScheduledService, got {type(item).__name__}")
    return items


def _sum_prices(services: Iterable[ScheduledService]) -> Decimal:
    return sum((service.unit_price for service in services), Decimal("0"))


class Scheduling:
    """Appointment aggregate: a time slot, priced services and a status state machine.

    Every mutator takes the current instant explicitly and validates before
    writing, so a rejected call leaves the entity untouched.
    """

    def __init__(
        self,
        *,
        id: str,
        time_slot: TimeSlot,
        customer_id: str,
        pet_id: str,
        services: Iterable[ScheduledService],
        created_at: datetime,
        status: SchedulingStatus | str = SchedulingStatus.SCHEDULED,
        notes: str | None = None,
        updated_at: datetime | None = None,
        version: int = 0,
    ) -> None:
        if not id:
            raise ValidationError("scheduling id is required")
        if not isinstance(time_slot, TimeSlot):
            raise ValidationError("time_slot must be a TimeSlot")
        if not customer_id:
            raise ValidationError("customer_id is required")
        if not pet_id:
            raise ValidationError("pet_id is required")
        if version < 0:
            raise ValidationError("version cannot be negative")

        self._id = id
        self._time_slot = time_slot
        self._customer_id = customer_id
        self._pet_id = pet_id
        self._services = _validated_services(services)
        self._total_price = _sum_prices(self._services)
        self._status = coerce_status(status)
        self._notes = notes.strip() if notes else None
        self._created_at = coerce_instant(created_at, field_name="created_at")
        self._updated_at = coerce_instant(updated_at, field_name="updated_at") if updated_at else self._created_at
        self._version = version

    @property
    def id(self) -> str:
        return self._id

    @property
    def time_slot(self) -> TimeSlot:
        return self._time_slot

    @property
    def status(self) -> SchedulingStatus:
        return self._status

    @property
    def services(self) -> list[ScheduledService]:
        return list(self._services)

    @property
    def total_price(self) -> Decimal:
        return self._total_price

    @property
    def notes(self) -> str | None:
        return self._notes

    @property
    def customer_id(self) -> str:
        return self._customer_id

    @property
    def pet_id(self) -> str:
        return self._pet_id

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        return self._updated_at

    @property
    def version(self) -> int:
        """Write counter kept by the store; 0 until the scheduling is first persisted."""
        return self._version

    @property
    def total_duration_minutes(self) -> int:
        return self._time_slot.duration_minutes

    @property
    def is_terminal(self) -> bool:
        return self._status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self._status in ACTIVE_STATUSES

    def can_transition_to(self, status: SchedulingStatus | str) -> bool:
        return coerce_status(status) in ALLOWED_TRANSITIONS[self._status]

    def transition_to(self, status: SchedulingStatus | str, now: datetime) -> None:
        target = coerce_status(status)
        self._ensure_not_terminal(f"move to {target.value}")
        if target not in ALLOWED_TRANSITIONS[self._status]:
            raise IllegalTransition(
                f"cannot move scheduling {self._id} from {self._status.value} to {target.value}",
                current_status=self._status.value,
                target_status=target.value,
            )
        moment = coerce_instant(now, field_name="now")
        self._status = target
        self._updated_at = moment

    def confirm(self, now: datetime) -> None:
        self.transition_to(SchedulingStatus.CONFIRMED, now)

    def mark_as_in_progress(self, now: datetime) -> None:
        self.transition_to(SchedulingStatus.IN_PROGRESS, now)

    def complete(self, now: datetime) -> None:
        self.transition_to(SchedulingStatus.COMPLETED, now)

    def cancel(self, now: datetime) -> None:
        self.transition_to(SchedulingStatus.CANCELLED, now)

    def mark_as_no_show(self, now: datetime) -> None:
        self.transition_to(SchedulingStatus.NO_SHOW, now)

    def reopen(self, now: datetime) -> None:
        """Manual reschedule of a no-show: the only way out of NO_SHOW."""
        self.transition_to(SchedulingStatus.SCHEDULED, now)

    def update_time_slot(self, time_slot: TimeSlot, now: datetime) -> None:
        self._ensure_editable("change the time slot of")
        if not isinstance(time_slot, TimeSlot):
            raise ValidationError("time_slot must be a TimeSlot")
        moment = coerce_instant(now, field_name="now")
        self._time_slot = time_slot
        self._updated_at = moment

    def update_services(self, services: Iterable[ScheduledService], now: datetime) -> None:
        self._ensure_editable("change the services of")
        items = _validated_services(services)
        moment = coerce_instant(now, field_name="now")
        self._services = items
        self._total_price = _sum_prices(items)
        self._updated_at = moment

    def add_notes(self, notes: str, now: datetime) -> None:
        self._ensure_not_terminal("add notes to")
        if not isinstance(notes, str):
            raise ValidationError("notes must be a string")
        moment = coerce_instant(now, field_name="now")
        self._notes = notes.strip() or None
        self._updated_at = moment

    def has_conflict_with(self, other: "Scheduling") -> bool:
        return self._time_slot.overlaps(other.time_slot)

    def with_version(self, version: int) -> "Scheduling":
        clone = copy.deepcopy(self)
        clone._version = version
        return clone

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self._id,
            "start_at": self._time_slot.start_at,
            "end_at": self._time_slot.end_at,
            "status": self._status.value,
            "total_price": self._total_price,
            "notes": self._notes,
            "customer_id": self._customer_id,
            "pet_id": self._pet_id,
            "services": [service.model_dump() for service in self._services],
            "created_at": self._created_at,
            "updated_at": self._updated_at,
            "version": self._version,
        }

    def _ensure_not_terminal(self, action: str) -> None:
        if self._status in TERMINAL_STATUSES:
            raise TerminalStateViolation(
                f"cannot {action} scheduling {self._id}: it is already {self._status.value}",
                current_status=self._status.value,
            )

    def _ensure_editable(self, action: str) -> None:
        self._ensure_not_terminal(action)
        if self._status in EDIT_LOCKED_STATUSES:
            raise IllegalTransition(
                f"cannot {action} scheduling {self._id} while it is {self._status.value}",
                current_status=self._status.value,
            )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Scheduling):
            return NotImplemented
        return self._id == other._id

    def __hash__(self) -> int:
        return hash(self._id)

    def __repr__(self) -> str:
        return f"Scheduling(id={self._id!r}, status={self._status.value!r}, time_slot={self._time_slot})"
