"""Immutable time interval used for appointments and conflict detection."""

import math
from datetime import UTC, datetime, timedelta
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, computed_field, field_validator, model_validator

from grooming.domain.errors import InvalidDuration, InvalidInterval


def coerce_instant(value: Any, field_name: str = "instant") -> datetime:
    """Return ``value`` as a timezone-aware datetime.

    ISO-8601 strings are parsed, naive datetimes are taken to be UTC and
    aware ones are converted to UTC.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise InvalidInterval(f"{field_name} is not a valid ISO-8601 timestamp: {value!r}") from None
    if not isinstance(value, datetime):
        raise InvalidInterval(f"{field_name} must be a datetime, got {type(value).__name__}")
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def validation_message(exc: pydantic.ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    message = errors[0]["msg"]
    return message.removeprefix("Value error, ")


class TimeSlot(BaseModel):
    """Closed interval ``[start_at, end_at]`` where touching intervals do not overlap.

    Build slots through ``create``, ``from_duration`` or ``from_iso``; they raise
    the domain errors. Calling the model directly raises ``pydantic.ValidationError``.
    """

    start_at: datetime
    end_at: datetime

    model_config = ConfigDict(frozen=True)

    @field_validator("start_at", "end_at", mode="before")
    @classmethod
    def validate_instant(cls, value: Any, info: pydantic.ValidationInfo) -> datetime:
        return coerce_instant(value, field_name=info.field_name)

    @model_validator(mode="after")
    def validate_interval(self) -> "TimeSlot":
        if self.start_at >= self.end_at:
            raise ValueError("start_at must be before end_at")
        return self

    @classmethod
    def create(cls, start_at: datetime | str, end_at: datetime | str) -> "TimeSlot":
        try:
            return cls(start_at=start_at, end_at=end_at)
        except pydantic.ValidationError as exc:
            raise InvalidInterval(validation_message(exc)) from None

    @classmethod
    def from_duration(cls, start_at: datetime | str, duration_minutes: int) -> "TimeSlot":
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int) or duration_minutes <= 0:
            raise InvalidDuration(f"duration must be a positive whole number of minutes, got {duration_minutes!r}")
        start = coerce_instant(start_at, field_name="start_at")
        return cls.create(start, start + timedelta(minutes=duration_minutes))

    @classmethod
    def from_iso(cls, start_iso: str, end_iso: str) -> "TimeSlot":
        return cls.create(start_iso, end_iso)

    @computed_field
    @property
    def duration_minutes(self) -> int:
        seconds = (self.end_at - self.start_at).total_seconds()
        return math.floor(seconds / 60 + 0.5)

    def overlaps(self, other: "TimeSlot") -> bool:
        return self.start_at < other.end_at and self.end_at > other.start_at

    def contains(self, other: "TimeSlot") -> bool:
        return self.start_at <= other.start_at and self.end_at >= other.end_at

    def includes_time(self, instant: datetime) -> bool:
        moment = coerce_instant(instant)
        return self.start_at <= moment <= self.end_at

    def split(self, slot_minutes: int) -> list["TimeSlot"]:
        """Cut the interval into consecutive slots; the last one is clipped to ``end_at``."""
        if isinstance(slot_minutes, bool) or not isinstance(slot_minutes, int) or slot_minutes <= 0:
            raise InvalidDuration(f"slot length must be a positive whole number of minutes, got {slot_minutes!r}")

        step = timedelta(minutes=slot_minutes)
        slots: list[TimeSlot] = []
        cursor = self.start_at
        while cursor < self.end_at:
            slots.append(TimeSlot(start_at=cursor, end_at=min(cursor + step, self.end_at)))
            cursor += step
        return slots

    def isoformat(self) -> tuple[str, str]:
        return self.start_at.isoformat(), self.end_at.isoformat()

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def __str__(self) -> str:
        return (
            f"{self.start_at:%Y-%m-%d %H:%M} - {self.end_at:%Y-%m-%d %H:%M} "
            f"({self.duration_minutes} minutes)"
        )
