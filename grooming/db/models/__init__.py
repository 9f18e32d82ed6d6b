from grooming.db.models.notification import NotificationRecord
from grooming.db.models.scheduling import ScheduledServiceRecord, SchedulingRecord

__all__ = [
    "SchedulingRecord",
    "ScheduledServiceRecord",
    "NotificationRecord",
]
