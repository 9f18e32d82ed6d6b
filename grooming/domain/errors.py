class GroomingError(Exception):
    """Base class for every error raised by the scheduling core."""

    code = "grooming_error"


class ValidationError(GroomingError, ValueError):
    code = "validation_error"


class InvalidInterval(ValidationError):
    code = "invalid_interval"


class InvalidDuration(ValidationError):
    code = "invalid_duration"


class IllegalTransition(GroomingError):
    code = "illegal_transition"

    def __init__(self, message: str, current_status: str | None = None, target_status: str | None = None) -> None:
        super().__init__(message)
        self.current_status = current_status
        self.target_status = target_status


class TerminalStateViolation(IllegalTransition):
    code = "terminal_state"


class IllegalNotificationTransition(GroomingError):
    code = "illegal_notification_transition"


class SchedulingConflict(GroomingError):
    code = "scheduling_conflict"

    def __init__(self, message: str, conflicting_ids: list[str] | None = None) -> None:
        super().__init__(message)
        self.conflicting_ids = list(conflicting_ids or [])


class ConcurrentModification(GroomingError):
    """The stored scheduling changed after the caller read it."""

    code = "concurrent_modification"


class SchedulingNotFound(GroomingError, LookupError):
    code = "scheduling_not_found"


class NotificationNotFound(GroomingError, LookupError):
    code = "notification_not_found"


class ChannelDeliveryFailure(GroomingError):
    """Raised by channel providers; converted into a FAILED notification by the dispatcher."""

    code = "channel_delivery_failure"
