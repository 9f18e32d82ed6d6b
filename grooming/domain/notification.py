from datetime import datetime
from enum import Enum
from typing import Any

from grooming.domain.errors import IllegalNotificationTransition, ValidationError
from grooming.domain.time_slot import coerce_instant


class NotificationType(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


NOTIFICATION_TRANSITIONS: dict[NotificationStatus, frozenset[NotificationStatus]] = {
    NotificationStatus.PENDING: frozenset({NotificationStatus.SENT, NotificationStatus.FAILED}),
    NotificationStatus.SENT: frozenset({NotificationStatus.DELIVERED, NotificationStatus.FAILED}),
    NotificationStatus.FAILED: frozenset({NotificationStatus.PENDING}),
    NotificationStatus.DELIVERED: frozenset(),
}

_unmapped = set(NotificationStatus) - set(NOTIFICATION_TRANSITIONS)
if _unmapped:
    raise RuntimeError(f"Notification statuses without transition rules: {sorted(s.value for s in _unmapped)}")


def _coerce_enum(enum_cls: type[Enum], value: Any, label: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"invalid notification {label} {value!r}; expected one of: {allowed}") from None


def _optional_instant(value: datetime | None, field_name: str) -> datetime | None:
    return coerce_instant(value, field_name=field_name) if value is not None else None


class Notification:
    """A single message sent through one channel, with its own delivery lifecycle."""

    def __init__(
        self,
        *,
        id: str,
        type: NotificationType | str,
        content: str,
        scheduling_id: str,
        created_at: datetime,
        rule_key: str = "system.default",
        target_id: str | None = None,
        status: NotificationStatus | str = NotificationStatus.PENDING,
        retry_count: int = 0,
        sent_at: datetime | None = None,
        delivered_at: datetime | None = None,
        failed_at: datetime | None = None,
        failure_reason: str | None = None,
    ) -> None:
        if not id:
            raise ValidationError("notification id is required")
        if not content or not content.strip():
            raise ValidationError("notification content is required")
        if not scheduling_id:
            raise ValidationError("scheduling_id is required")
        if retry_count < 0:
            raise ValidationError("retry_count cannot be negative")

        status = _coerce_enum(NotificationStatus, status, "status")
        failure_reason = failure_reason.strip() if failure_reason else None
        if (status is NotificationStatus.FAILED) != (failure_reason is not None):
            raise ValidationError("failure_reason must be set if and only if the notification failed")

        self._id = id
        self._type = _coerce_enum(NotificationType, type, "type")
        self._content = content.strip()
        self._scheduling_id = scheduling_id
        self._rule_key = rule_key
        self._target_id = target_id or scheduling_id
        self._status = status
        self._retry_count = retry_count
        self._created_at = coerce_instant(created_at, field_name="created_at")
        self._sent_at = _optional_instant(sent_at, "sent_at")
        self._delivered_at = _optional_instant(delivered_at, "delivered_at")
        self._failed_at = _optional_instant(failed_at, "failed_at")
        self._failure_reason = failure_reason

    @property
    def id(self) -> str:
        return self._id

    @property
    def type(self) -> NotificationType:
        return self._type

    @property
    def content(self) -> str:
        return self._content

    @property
    def scheduling_id(self) -> str:
        return self._scheduling_id

    @property
    def rule_key(self) -> str:
        return self._rule_key

    @property
    def target_id(self) -> str:
        return self._target_id

    @property
    def status(self) -> NotificationStatus:
        return self._status

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def sent_at(self) -> datetime | None:
        return self._sent_at

    @property
    def delivered_at(self) -> datetime | None:
        return self._delivered_at

    @property
    def failed_at(self) -> datetime | None:
        return self._failed_at

    @property
    def failure_reason(self) -> str | None:
        return self._failure_reason

    def mark_as_sent(self, now: datetime) -> None:
        self._ensure_transition(NotificationStatus.SENT, "mark as sent")
        moment = coerce_instant(now, field_name="now")
        self._status = NotificationStatus.SENT
        self._sent_at = moment

    def mark_as_delivered(self, now: datetime) -> None:
        self._ensure_transition(NotificationStatus.DELIVERED, "mark as delivered")
        moment = coerce_instant(now, field_name="now")
        self._status = NotificationStatus.DELIVERED
        self._delivered_at = moment

    def mark_as_failed(self, reason: str, now: datetime) -> None:
        self._ensure_transition(NotificationStatus.FAILED, "mark as failed")
        reason = (reason or "").strip() or "unknown error"
        moment = coerce_instant(now, field_name="now")
        self._status = NotificationStatus.FAILED
        self._failed_at = moment
        self._failure_reason = reason

    def retry(self) -> None:
        self._ensure_transition(NotificationStatus.PENDING, "retry")
        self._status = NotificationStatus.PENDING
        self._failed_at = None
        self._failure_reason = None
        self._retry_count += 1

    def update_content(self, content: str) -> None:
        if self._status is not NotificationStatus.PENDING:
            raise IllegalNotificationTransition(
                f"cannot update content of notification {self._id} with status {self._status.value}"
            )
        if not content or not content.strip():
            raise ValidationError("notification content is required")
        self._content = content.strip()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self._id,
            "type": self._type.value,
            "content": self._content,
            "scheduling_id": self._scheduling_id,
            "rule_key": self._rule_key,
            "target_id": self._target_id,
            "status": self._status.value,
            "retry_count": self._retry_count,
            "created_at": self._created_at,
            "sent_at": self._sent_at,
            "delivered_at": self._delivered_at,
            "failed_at": self._failed_at,
            "failure_reason": self._failure_reason,
        }

    def _ensure_transition(self, target: NotificationStatus, action: str) -> None:
        if target not in NOTIFICATION_TRANSITIONS[self._status]:
            raise IllegalNotificationTransition(
                f"cannot {action} notification {self._id} with status {self._status.value}"
            )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Notification):
            return NotImplemented
        return self._id == other._id

    def __hash__(self) -> int:
        return hash(self._id)

    def __repr__(self) -> str:
        return f"Notification(id={self._id!r}, type={self._type.value!r}, status={self._status.value!r})"
