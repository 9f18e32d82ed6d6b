import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from uuid import uuid4

from grooming.domain.notification import Notification, NotificationType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryOutcome:
    delivered: bool = False
    provider_message_id: str | None = None


class ChannelProvider(ABC):
    """Transport for one notification channel.

    `send` returns once the provider accepted the message. Raising
    (ChannelDeliveryFailure or anything else) counts as a failed attempt.
    """

    channel: NotificationType

    @abstractmethod
    def send(self, notification: Notification, content: str) -> DeliveryOutcome:
        raise NotImplementedError


class LoggingChannelProvider(ChannelProvider):
    """Writes messages to the log instead of a real gateway. Used in development."""

    def __init__(self, channel: NotificationType | str) -> None:
        self.channel = NotificationType(channel)

    def send(self, notification: Notification, content: str) -> DeliveryOutcome:
        message_id = str(uuid4())
        logger.info(
            "channel_send channel=%s notification_id=%s scheduling_id=%s message_id=%s chars=%s",
            self.channel.value,
            notification.id,
            notification.scheduling_id,
            message_id,
            len(content),
        )
        return DeliveryOutcome(delivered=False, provider_message_id=message_id)


def logging_providers() -> dict[NotificationType, ChannelProvider]:
    return {channel: LoggingChannelProvider(channel) for channel in NotificationType}
