"""Dispatch policy per notification type.

A rule decides which channels a notification goes through, whether it is sent
right away or left for the background sweep, how many times a failed delivery
is retried and how often the same target may receive it.
"""

from collections.abc import Iterator, Mapping
from enum import Enum
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field

from grooming.domain.notification import NotificationType


class NotificationCategory(str, Enum):
    SCHEDULING = "scheduling"
    CUSTOMER = "customer"
    PET = "pet"
    SYSTEM = "system"


class NotificationPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class NotificationRule(BaseModel):
    category: NotificationCategory
    name: str
    channels: tuple[NotificationType, ...] = Field(min_length=1)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    rate_limit_hours: int | None = Field(default=None, gt=0)
    send_immediately: bool = False
    requires_confirmation: bool = False
    resend_on_failure: bool = True
    max_retries: int = Field(default=3, ge=0)

    model_config = ConfigDict(frozen=True)

    @property
    def key(self) -> str:
        return f"{self.category.value}.{self.name}"


DEFAULT_RULE = NotificationRule(
    category=NotificationCategory.SYSTEM,
    name="default",
    channels=(NotificationType.EMAIL,),
    priority=NotificationPriority.MEDIUM,
    send_immediately=False,
    requires_confirmation=False,
    resend_on_failure=True,
    max_retries=3,
)

_ALL_CHANNELS = (NotificationType.EMAIL, NotificationType.SMS, NotificationType.WHATSAPP)
_EMAIL_AND_SMS = (NotificationType.EMAIL, NotificationType.SMS)
_HOURS_PER_DAY = 24

DEFAULT_RULES: tuple[NotificationRule, ...] = (
    NotificationRule(
        category=NotificationCategory.SCHEDULING,
        name="confirmation",
        channels=_ALL_CHANNELS,
        priority=NotificationPriority.HIGH,
        send_immediately=True,
        max_retries=3,
    ),
    NotificationRule(
        category=NotificationCategory.SCHEDULING,
        name="reminder",
        channels=_ALL_CHANNELS,
        priority=NotificationPriority.MEDIUM,
        max_retries=2,
    ),
    NotificationRule(
        category=NotificationCategory.SCHEDULING,
        name="cancellation",
        channels=_ALL_CHANNELS,
        priority=NotificationPriority.HIGH,
        send_immediately=True,
        max_retries=3,
    ),
    NotificationRule(
        category=NotificationCategory.SCHEDULING,
        name="rescheduled",
        channels=_ALL_CHANNELS,
        priority=NotificationPriority.HIGH,
        send_immediately=True,
        max_retries=3,
    ),
    NotificationRule(
        category=NotificationCategory.CUSTOMER,
        name="welcome",
        channels=_EMAIL_AND_SMS,
        send_immediately=True,
        resend_on_failure=False,
        max_retries=1,
    ),
    NotificationRule(
        category=NotificationCategory.CUSTOMER,
        name="birthday",
        channels=_ALL_CHANNELS,
        priority=NotificationPriority.LOW,
        rate_limit_hours=365 * _HOURS_PER_DAY,
        resend_on_failure=False,
        max_retries=1,
    ),
    NotificationRule(
        category=NotificationCategory.CUSTOMER,
        name="inactive",
        channels=_EMAIL_AND_SMS,
        priority=NotificationPriority.LOW,
        rate_limit_hours=30 * _HOURS_PER_DAY,
        resend_on_failure=False,
        max_retries=1,
    ),
    NotificationRule(
        category=NotificationCategory.PET,
        name="checkup_reminder",
        channels=_EMAIL_AND_SMS,
        rate_limit_hours=3 * _HOURS_PER_DAY,
        max_retries=2,
    ),
    NotificationRule(
        category=NotificationCategory.PET,
        name="vaccination_due",
        channels=_ALL_CHANNELS,
        priority=NotificationPriority.HIGH,
        rate_limit_hours=2 * _HOURS_PER_DAY,
        send_immediately=True,
        max_retries=3,
    ),
    NotificationRule(
        category=NotificationCategory.PET,
        name="birthday",
        channels=_EMAIL_AND_SMS,
        priority=NotificationPriority.LOW,
        rate_limit_hours=365 * _HOURS_PER_DAY,
        resend_on_failure=False,
        max_retries=1,
    ),
    NotificationRule(
        category=NotificationCategory.PET,
        name="adoption_anniversary",
        channels=_EMAIL_AND_SMS,
        priority=NotificationPriority.LOW,
        rate_limit_hours=365 * _HOURS_PER_DAY,
        resend_on_failure=False,
        max_retries=1,
    ),
    NotificationRule(
        category=NotificationCategory.SYSTEM,
        name="maintenance",
        channels=(NotificationType.EMAIL,),
        send_immediately=True,
        resend_on_failure=False,
        max_retries=1,
    ),
    NotificationRule(
        category=NotificationCategory.SYSTEM,
        name="security",
        channels=_EMAIL_AND_SMS,
        priority=NotificationPriority.HIGH,
        send_immediately=True,
        requires_confirmation=True,
        max_retries=5,
    ),
)


class NotificationRuleTable(Mapping[str, NotificationRule]):
    """Read-only rule lookup, built once and handed to whoever dispatches."""

    def __init__(self, rules: Mapping[str, NotificationRule], default: NotificationRule = DEFAULT_RULE) -> None:
        self._rules = MappingProxyType(dict(rules))
        self._default = default

    @classmethod
    def from_rules(cls, rules: tuple[NotificationRule, ...] | list[NotificationRule], default: NotificationRule = DEFAULT_RULE) -> "NotificationRuleTable":
        table: dict[str, NotificationRule] = {}
        for rule in rules:
            if rule.key in table:
                raise ValueError(f"duplicate notification rule: {rule.key}")
            table[rule.key] = rule
        return cls(table, default=default)

    @classmethod
    def default(cls) -> "NotificationRuleTable":
        return cls.from_rules(DEFAULT_RULES)

    @property
    def default_rule(self) -> NotificationRule:
        return self._default

    def get_rule(self, type_key: str) -> NotificationRule:
        return self._rules.get(type_key, self._default)

    def __getitem__(self, type_key: str) -> NotificationRule:
        return self._rules[type_key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)
