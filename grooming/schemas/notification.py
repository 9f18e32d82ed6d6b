from pydantic import BaseModel, Field, field_validator

from grooming.domain.notification import NotificationType


class NotificationRequest(BaseModel):
    """What a workflow asks the dispatcher to send.

    `content` is either one text for every channel or a text per channel.
    """

    type_key: str = Field(min_length=1)
    scheduling_id: str = Field(min_length=1)
    target_id: str | None = None
    content: str | dict[NotificationType, str]

    @field_validator("content")
    @classmethod
    def validate_content(cls, value):
        texts = value.values() if isinstance(value, dict) else [value]
        if not texts or any(not text.strip() for text in texts):
            raise ValueError("notification content must not be empty")
        return value

    def content_for(self, channel: NotificationType) -> str | None:
        if isinstance(self.content, dict):
            return self.content.get(channel)
        return self.content
