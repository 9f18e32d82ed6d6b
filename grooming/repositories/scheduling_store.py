"""Persistence contract for schedulings and its two implementations.

Both stores make the conflict check and the write a single atomic step.
The in-memory store holds a lock across them. The SQLAlchemy store takes a
PostgreSQL advisory lock and re-runs the overlap query after flushing the
new row, inside the same transaction.

Saves are optimistic: a scheduling read at one version can only be written
back while the stored copy is still at that version.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from grooming.core.metrics import SCHEDULING_CONFLICTS
from grooming.db.models import ScheduledServiceRecord, SchedulingRecord
from grooming.domain.errors import (
    ConcurrentModification,
    IllegalTransition,
    SchedulingConflict,
    SchedulingNotFound,
    TerminalStateViolation,
    ValidationError,
)
from grooming.domain.scheduling import (
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    ScheduledService,
    Scheduling,
    SchedulingStatus,
    coerce_status,
)
from grooming.domain.time_slot import TimeSlot, coerce_instant

logger = logging.getLogger(__name__)

SCHEDULING_WRITE_LOCK_KEY = 7_340_210
PG_CONCURRENCY_SQLSTATES = {"40001", "40P01", "55P03"}


def conflict_error(time_slot: TimeSlot, conflicts: list[Scheduling]) -> SchedulingConflict:
    SCHEDULING_CONFLICTS.inc()
    ids = [scheduling.id for scheduling in conflicts]
    logger.warning("scheduling_conflict slot=%s conflicting_ids=%s", time_slot, ids)
    return SchedulingConflict(f"time slot {time_slot} overlaps existing scheduling(s): {', '.join(ids)}", ids)


def _ensure_current(previous: Scheduling, current: Scheduling) -> None:
    if current.version != previous.version:
        raise ConcurrentModification(
            f"scheduling {current.id} was modified after it was read "
            f"(read version {current.version}, stored version {previous.version})"
        )
    if previous.is_terminal:
        raise TerminalStateViolation(
            f"cannot save scheduling {previous.id}: it is already {previous.status.value}",
            current_status=previous.status.value,
        )
    if current.status is not previous.status and current.status not in ALLOWED_TRANSITIONS[previous.status]:
        raise IllegalTransition(
            f"cannot move scheduling {previous.id} from {previous.status.value} to {current.status.value}",
            current_status=previous.status.value,
            target_status=current.status.value,
        )


def _needs_conflict_check(previous: Scheduling | None, current: Scheduling) -> bool:
    if not current.is_active:
        return False
    if previous is None or not previous.is_active:
        return True
    return previous.time_slot != current.time_slot


class SchedulingStore(ABC):
    @abstractmethod
    def create(self, scheduling: Scheduling) -> Scheduling:
        """Persist a new scheduling, failing with SchedulingConflict if its slot is taken."""
        raise NotImplementedError

    @abstractmethod
    def save(self, scheduling: Scheduling) -> Scheduling:
        """Persist changes; re-checks conflicts when the scheduling newly claims a slot."""
        raise NotImplementedError

    @abstractmethod
    def find_by_id(self, scheduling_id: str) -> Scheduling | None:
        raise NotImplementedError

    @abstractmethod
    def find_conflicts(self, time_slot: TimeSlot, exclude_id: str | None = None) -> list[Scheduling]:
        raise NotImplementedError

    @abstractmethod
    def find_by_period(
        self,
        start_at: datetime,
        end_at: datetime,
        status: SchedulingStatus | None = None,
    ) -> list[Scheduling]:
        raise NotImplementedError

    @abstractmethod
    def find_by_customer(
        self,
        customer_id: str,
        status: SchedulingStatus | None = None,
        limit: int | None = None,
    ) -> list[Scheduling]:
        raise NotImplementedError

    @abstractmethod
    def find_by_pet(
        self,
        pet_id: str,
        status: SchedulingStatus | None = None,
        limit: int | None = None,
    ) -> list[Scheduling]:
        raise NotImplementedError

    def get(self, scheduling_id: str) -> Scheduling:
        scheduling = self.find_by_id(scheduling_id)
        if scheduling is None:
            raise SchedulingNotFound(f"scheduling {scheduling_id} not found")
        return scheduling

    def update_status(self, scheduling_id: str, status: SchedulingStatus | str, now: datetime) -> Scheduling:
        scheduling = self.get(scheduling_id)
        scheduling.transition_to(status, now)
        return self.save(scheduling)

    def update_time_slot(self, scheduling_id: str, time_slot: TimeSlot, now: datetime) -> Scheduling:
        scheduling = self.get(scheduling_id)
        scheduling.update_time_slot(time_slot, now)
        return self.save(scheduling)


class InMemorySchedulingStore(SchedulingStore):
    """Thread-safe store keeping private copies of every scheduling."""

    def __init__(self) -> None:
        self._items: dict[str, Scheduling] = {}
        self._lock = threading.RLock()

    def create(self, scheduling: Scheduling) -> Scheduling:
        with self._lock:
            if scheduling.id in self._items:
                raise ValidationError(f"scheduling {scheduling.id} already exists")
            if scheduling.is_active:
                conflicts = self.find_conflicts(scheduling.time_slot)
                if conflicts:
                    raise conflict_error(scheduling.time_slot, conflicts)
            stored = scheduling.with_version(1)
            self._items[scheduling.id] = stored
            return copy.deepcopy(stored)

    def save(self, scheduling: Scheduling) -> Scheduling:
        with self._lock:
            previous = self._items.get(scheduling.id)
            if previous is None:
                raise SchedulingNotFound(f"scheduling {scheduling.id} not found")
            _ensure_current(previous, scheduling)
            if _needs_conflict_check(previous, scheduling):
                conflicts = self.find_conflicts(scheduling.time_slot, exclude_id=scheduling.id)
                if conflicts:
                    raise conflict_error(scheduling.time_slot, conflicts)
            stored = scheduling.with_version(previous.version + 1)
            self._items[scheduling.id] = stored
            return copy.deepcopy(stored)

    def find_by_id(self, scheduling_id: str) -> Scheduling | None:
        with self._lock:
            scheduling = self._items.get(scheduling_id)
            return copy.deepcopy(scheduling) if scheduling is not None else None

    def find_conflicts(self, time_slot: TimeSlot, exclude_id: str | None = None) -> list[Scheduling]:
        with self._lock:
            return self._select(
                lambda item: item.id != exclude_id and item.is_active and item.time_slot.overlaps(time_slot)
            )

    def find_by_period(
        self,
        start_at: datetime,
        end_at: datetime,
        status: SchedulingStatus | None = None,
    ) -> list[Scheduling]:
        start, end = coerce_instant(start_at), coerce_instant(end_at)
        with self._lock:
            return self._select(
                lambda item: item.time_slot.start_at >= start
                and item.time_slot.end_at <= end
                and (status is None or item.status is coerce_status(status))
            )

    def find_by_customer(
        self,
        customer_id: str,
        status: SchedulingStatus | None = None,
        limit: int | None = None,
    ) -> list[Scheduling]:
        with self._lock:
            found = self._select(
                lambda item: item.customer_id == customer_id
                and (status is None or item.status is coerce_status(status))
            )
        return found[:limit] if limit is not None else found

    def find_by_pet(
        self,
        pet_id: str,
        status: SchedulingStatus | None = None,
        limit: int | None = None,
    ) -> list[Scheduling]:
        with self._lock:
            found = self._select(
                lambda item: item.pet_id == pet_id and (status is None or item.status is coerce_status(status))
            )
        return found[:limit] if limit is not None else found

    def _select(self, predicate) -> list[Scheduling]:
        matches = [item for item in self._items.values() if predicate(item)]
        matches.sort(key=lambda item: (item.time_slot.start_at, item.id))
        return [copy.deepcopy(item) for item in matches]


def scheduling_from_record(record: SchedulingRecord) -> Scheduling:
    return Scheduling(
        id=record.id,
        time_slot=TimeSlot.create(record.start_at, record.end_at),
        customer_id=record.customer_id,
        pet_id=record.pet_id,
        services=[
            ScheduledService(
                id=service.id,
                service_id=service.service_id,
                name=service.name,
                unit_price=service.unit_price,
                duration_minutes=service.duration_minutes,
            )
            for service in record.services
        ],
        status=record.status,
        notes=record.notes,
        created_at=record.created_at,
        updated_at=record.updated_at,
        version=record.version_id,
    )


def _apply_to_record(record: SchedulingRecord, scheduling: Scheduling) -> None:
    record.start_at = scheduling.time_slot.start_at
    record.end_at = scheduling.time_slot.end_at
    record.status = scheduling.status.value
    record.total_price = scheduling.total_price
    record.notes = scheduling.notes
    record.updated_at = scheduling.updated_at

    existing = {service.id: service for service in record.services}
    wanted_ids = {service.id for service in scheduling.services}
    for service_record in list(record.services):
        if service_record.id not in wanted_ids:
            record.services.remove(service_record)
    for position, service in enumerate(scheduling.services):
        service_record = existing.get(service.id)
        if service_record is None:
            service_record = ScheduledServiceRecord(id=service.id)
            record.services.append(service_record)
        service_record.service_id = service.service_id
        service_record.name = service.name
        service_record.unit_price = service.unit_price
        service_record.duration_minutes = service.duration_minutes
        service_record.position = position


def _is_postgresql_session(db: Session) -> bool:
    bind = db.get_bind()
    return bind is not None and bind.dialect.name == "postgresql"


def _is_pg_concurrency_failure(exc: OperationalError) -> bool:
    original_error = getattr(exc, "orig", None)
    if original_error is None:
        return False

    sqlstate = getattr(original_error, "sqlstate", None)
    if sqlstate is None:
        sqlstate = getattr(original_error, "pgcode", None)

    return sqlstate in PG_CONCURRENCY_SQLSTATES


class SqlAlchemySchedulingStore(SchedulingStore):
    def __init__(self, db: Session) -> None:
        self._db = db

    def create(self, scheduling: Scheduling) -> Scheduling:
        try:
            self._lock_slot_writes()
            if scheduling.is_active:
                self._raise_on_conflicts(scheduling.time_slot, exclude_id=None)

            record = SchedulingRecord(
                id=scheduling.id,
                customer_id=scheduling.customer_id,
                pet_id=scheduling.pet_id,
                created_at=scheduling.created_at,
            )
            _apply_to_record(record, scheduling)
            self._db.add(record)
            self._db.flush()

            if scheduling.is_active:
                self._raise_on_conflicts(scheduling.time_slot, exclude_id=scheduling.id)
            self._db.commit()
        except SchedulingConflict:
            self._db.rollback()
            raise
        except IntegrityError:
            self._db.rollback()
            raise ValidationError(f"scheduling {scheduling.id} already exists") from None
        except OperationalError as exc:
            self._db.rollback()
            if _is_pg_concurrency_failure(exc):
                raise SchedulingConflict("time slot is being booked concurrently. Retry the request.") from None
            raise

        self._db.refresh(record)
        return scheduling_from_record(record)

    def save(self, scheduling: Scheduling) -> Scheduling:
        try:
            self._lock_slot_writes()
            record = self._get_record(scheduling.id, refresh=True)
            if record is None:
                raise SchedulingNotFound(f"scheduling {scheduling.id} not found")

            previous = scheduling_from_record(record)
            _ensure_current(previous, scheduling)
            check_conflicts = _needs_conflict_check(previous, scheduling)
            if check_conflicts:
                self._raise_on_conflicts(scheduling.time_slot, exclude_id=scheduling.id)

            _apply_to_record(record, scheduling)
            self._db.flush()
            if check_conflicts:
                self._raise_on_conflicts(scheduling.time_slot, exclude_id=scheduling.id)
            self._db.commit()
        except (SchedulingConflict, SchedulingNotFound, ConcurrentModification, IllegalTransition):
            self._db.rollback()
            raise
        except StaleDataError:
            self._db.rollback()
            raise ConcurrentModification(f"scheduling {scheduling.id} was modified concurrently") from None
        except OperationalError as exc:
            self._db.rollback()
            if _is_pg_concurrency_failure(exc):
                raise SchedulingConflict("time slot is being booked concurrently. Retry the request.") from None
            raise

        self._db.refresh(record)
        return scheduling_from_record(record)

    def find_by_id(self, scheduling_id: str) -> Scheduling | None:
        record = self._get_record(scheduling_id)
        return scheduling_from_record(record) if record is not None else None

    def find_conflicts(self, time_slot: TimeSlot, exclude_id: str | None = None) -> list[Scheduling]:
        query = self._base_query().where(
            SchedulingRecord.status.in_([status.value for status in ACTIVE_STATUSES]),
            SchedulingRecord.start_at < time_slot.end_at,
            SchedulingRecord.end_at > time_slot.start_at,
        )
        if exclude_id:
            query = query.where(SchedulingRecord.id != exclude_id)
        return self._fetch(query)

    def find_by_period(
        self,
        start_at: datetime,
        end_at: datetime,
        status: SchedulingStatus | None = None,
    ) -> list[Scheduling]:
        query = self._base_query().where(
            SchedulingRecord.start_at >= coerce_instant(start_at),
            SchedulingRecord.end_at <= coerce_instant(end_at),
        )
        if status is not None:
            query = query.where(SchedulingRecord.status == coerce_status(status).value)
        return self._fetch(query)

    def find_by_customer(
        self,
        customer_id: str,
        status: SchedulingStatus | None = None,
        limit: int | None = None,
    ) -> list[Scheduling]:
        query = self._base_query().where(SchedulingRecord.customer_id == customer_id)
        if status is not None:
            query = query.where(SchedulingRecord.status == coerce_status(status).value)
        return self._fetch(query, limit=limit)

    def find_by_pet(
        self,
        pet_id: str,
        status: SchedulingStatus | None = None,
        limit: int | None = None,
    ) -> list[Scheduling]:
        query = self._base_query().where(SchedulingRecord.pet_id == pet_id)
        if status is not None:
            query = query.where(SchedulingRecord.status == coerce_status(status).value)
        return self._fetch(query, limit=limit)

    def _base_query(self):
        return select(SchedulingRecord).options(selectinload(SchedulingRecord.services))

    def _fetch(self, query, limit: int | None = None) -> list[Scheduling]:
        query = query.order_by(SchedulingRecord.start_at, SchedulingRecord.id)
        if limit is not None:
            query = query.limit(limit)
        return [scheduling_from_record(record) for record in self._db.scalars(query).all()]

    def _get_record(self, scheduling_id: str, refresh: bool = False) -> SchedulingRecord | None:
        query = self._base_query().where(SchedulingRecord.id == scheduling_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        return self._db.scalar(query)

    def _raise_on_conflicts(self, time_slot: TimeSlot, exclude_id: str | None) -> None:
        conflicts = self.find_conflicts(time_slot, exclude_id=exclude_id)
        if conflicts:
            raise conflict_error(time_slot, conflicts)

    def _lock_slot_writes(self) -> None:
        # held until commit/rollback; serializes check-then-write across sessions
        if _is_postgresql_session(self._db):
            self._db.execute(select(func.pg_advisory_xact_lock(SCHEDULING_WRITE_LOCK_KEY)))
