"""Persistence contract for notifications and its two implementations.

A sender must `claim` a pending notification before delivering it. The claim
is a lease held by one token until `claimed_until`; any save releases it.
Only one claimant wins, so concurrent sweeps never send the same
notification twice.
"""

import copy
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from grooming.db.models import NotificationRecord
from grooming.domain.errors import NotificationNotFound, ValidationError
from grooming.domain.notification import Notification, NotificationStatus
from grooming.domain.time_slot import coerce_instant


class NotificationStore(ABC):
    @abstractmethod
    def create(self, notification: Notification) -> Notification:
        raise NotImplementedError

    @abstractmethod
    def save(self, notification: Notification) -> Notification:
        """Persist the notification and release any claim on it."""
        raise NotImplementedError

    @abstractmethod
    def claim(self, notification_id: str, token: str, now: datetime, lease_seconds: float) -> Notification | None:
        """Take the delivery lease on a PENDING notification.

        Returns the notification when `token` now holds the lease, or None when
        it is no longer PENDING or another live lease exists.
        """
        raise NotImplementedError

    @abstractmethod
    def find_by_id(self, notification_id: str) -> Notification | None:
        raise NotImplementedError

    @abstractmethod
    def find_pending(self, limit: int | None = None) -> list[Notification]:
        """Pending notifications, oldest first."""
        raise NotImplementedError

    @abstractmethod
    def find_by_scheduling_id(self, scheduling_id: str) -> list[Notification]:
        raise NotImplementedError

    @abstractmethod
    def has_recent(self, rule_key: str, target_id: str, since: datetime) -> bool:
        """True if a non-failed notification for this rule and target was created at or after `since`."""
        raise NotImplementedError

    def get(self, notification_id: str) -> Notification:
        notification = self.find_by_id(notification_id)
        if notification is None:
            raise NotificationNotFound(f"notification {notification_id} not found")
        return notification

    def mark_as_sent(self, notification_id: str, now: datetime) -> Notification:
        notification = self.get(notification_id)
        notification.mark_as_sent(now)
        return self.save(notification)

    def mark_as_delivered(self, notification_id: str, now: datetime) -> Notification:
        notification = self.get(notification_id)
        notification.mark_as_delivered(now)
        return self.save(notification)

    def mark_as_failed(self, notification_id: str, reason: str, now: datetime) -> Notification:
        notification = self.get(notification_id)
        notification.mark_as_failed(reason, now)
        return self.save(notification)

    def retry(self, notification_id: str) -> Notification:
        notification = self.get(notification_id)
        notification.retry()
        return self.save(notification)


class InMemoryNotificationStore(NotificationStore):
    def __init__(self) -> None:
        self._items: dict[str, Notification] = {}
        # notification id -> (token, claimed_until)
        self._claims: dict[str, tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def create(self, notification: Notification) -> Notification:
        with self._lock:
            if notification.id in self._items:
                raise ValidationError(f"notification {notification.id} already exists")
            self._items[notification.id] = copy.deepcopy(notification)
        return copy.deepcopy(notification)

    def save(self, notification: Notification) -> Notification:
        with self._lock:
            if notification.id not in self._items:
                raise NotificationNotFound(f"notification {notification.id} not found")
            self._items[notification.id] = copy.deepcopy(notification)
            self._claims.pop(notification.id, None)
        return copy.deepcopy(notification)

    def claim(self, notification_id: str, token: str, now: datetime, lease_seconds: float) -> Notification | None:
        now = coerce_instant(now, field_name="now")
        with self._lock:
            notification = self._items.get(notification_id)
            if notification is None or notification.status is not NotificationStatus.PENDING:
                return None
            current = self._claims.get(notification_id)
            if current is not None and current[1] > now:
                return None
            self._claims[notification_id] = (token, now + timedelta(seconds=lease_seconds))
            return copy.deepcopy(notification)

    def find_by_id(self, notification_id: str) -> Notification | None:
        with self._lock:
            notification = self._items.get(notification_id)
            return copy.deepcopy(notification) if notification is not None else None

    def find_pending(self, limit: int | None = None) -> list[Notification]:
        with self._lock:
            pending = [item for item in self._items.values() if item.status is NotificationStatus.PENDING]
            pending.sort(key=lambda item: (item.created_at, item.id))
            if limit is not None:
                pending = pending[:limit]
            return [copy.deepcopy(item) for item in pending]

    def find_by_scheduling_id(self, scheduling_id: str) -> list[Notification]:
        with self._lock:
            found = [item for item in self._items.values() if item.scheduling_id == scheduling_id]
            found.sort(key=lambda item: (item.created_at, item.id))
            return [copy.deepcopy(item) for item in found]

    def has_recent(self, rule_key: str, target_id: str, since: datetime) -> bool:
        since = coerce_instant(since, field_name="since")
        with self._lock:
            return any(
                item.rule_key == rule_key
                and item.target_id == target_id
                and item.status is not NotificationStatus.FAILED
                and item.created_at >= since
                for item in self._items.values()
            )


def notification_from_record(record: NotificationRecord) -> Notification:
    return Notification(
        id=record.id,
        type=record.channel,
        content=record.content,
        scheduling_id=record.scheduling_id,
        rule_key=record.rule_key,
        target_id=record.target_id,
        status=record.status,
        retry_count=record.retry_count,
        created_at=record.created_at,
        sent_at=record.sent_at,
        delivered_at=record.delivered_at,
        failed_at=record.failed_at,
        failure_reason=record.failure_reason,
    )


def _apply_to_record(record: NotificationRecord, notification: Notification) -> None:
    record.content = notification.content
    record.status = notification.status.value
    record.retry_count = notification.retry_count
    record.sent_at = notification.sent_at
    record.delivered_at = notification.delivered_at
    record.failed_at = notification.failed_at
    record.failure_reason = notification.failure_reason


class SqlAlchemyNotificationStore(NotificationStore):
    """Commits after every write and rolls back on any database error, so one
    failed statement never poisons a long-lived session."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def create(self, notification: Notification) -> Notification:
        record = NotificationRecord(
            id=notification.id,
            scheduling_id=notification.scheduling_id,
            channel=notification.type.value,
            rule_key=notification.rule_key,
            target_id=notification.target_id,
            created_at=notification.created_at,
        )
        _apply_to_record(record, notification)
        try:
            self._db.add(record)
            self._db.commit()
        except IntegrityError:
            self._db.rollback()
            raise ValidationError(f"notification {notification.id} already exists") from None
        except SQLAlchemyError:
            self._db.rollback()
            raise
        self._db.refresh(record)
        return notification_from_record(record)

    def save(self, notification: Notification) -> Notification:
        try:
            record = self._db.get(NotificationRecord, notification.id)
            if record is None:
                raise NotificationNotFound(f"notification {notification.id} not found")
            _apply_to_record(record, notification)
            record.claimed_by = None
            record.claimed_until = None
            self._db.commit()
        except SQLAlchemyError:
            self._db.rollback()
            raise
        self._db.refresh(record)
        return notification_from_record(record)

    def claim(self, notification_id: str, token: str, now: datetime, lease_seconds: float) -> Notification | None:
        now = coerce_instant(now, field_name="now")
        statement = (
            update(NotificationRecord)
            .where(
                NotificationRecord.id == notification_id,
                NotificationRecord.status == NotificationStatus.PENDING.value,
                or_(NotificationRecord.claimed_until.is_(None), NotificationRecord.claimed_until <= now),
            )
            .values(claimed_by=token, claimed_until=now + timedelta(seconds=lease_seconds))
            .execution_options(synchronize_session=False)
        )
        try:
            claimed = self._db.execute(statement).rowcount == 1
            self._db.commit()
        except SQLAlchemyError:
            self._db.rollback()
            raise
        if not claimed:
            return None
        record = self._db.get(NotificationRecord, notification_id, populate_existing=True)
        return notification_from_record(record)

    def find_by_id(self, notification_id: str) -> Notification | None:
        record = self._db.get(NotificationRecord, notification_id)
        return notification_from_record(record) if record is not None else None

    def find_pending(self, limit: int | None = None) -> list[Notification]:
        query = (
            select(NotificationRecord)
            .where(NotificationRecord.status == NotificationStatus.PENDING.value)
            .order_by(NotificationRecord.created_at, NotificationRecord.id)
        )
        if limit is not None:
            query = query.limit(limit)
        try:
            records = self._db.scalars(query).all()
        except SQLAlchemyError:
            self._db.rollback()
            raise
        return [notification_from_record(record) for record in records]

    def find_by_scheduling_id(self, scheduling_id: str) -> list[Notification]:
        query = (
            select(NotificationRecord)
            .where(NotificationRecord.scheduling_id == scheduling_id)
            .order_by(NotificationRecord.created_at, NotificationRecord.id)
        )
        return [notification_from_record(record) for record in self._db.scalars(query).all()]

    def has_recent(self, rule_key: str, target_id: str, since: datetime) -> bool:
        query = (
            select(NotificationRecord.id)
            .where(
                NotificationRecord.rule_key == rule_key,
                NotificationRecord.target_id == target_id,
                NotificationRecord.status != NotificationStatus.FAILED.value,
                NotificationRecord.created_at >= coerce_instant(since, field_name="since"),
            )
            .limit(1)
        )
        return self._db.scalar(query) is not None
