from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class ServiceLine(BaseModel):
    service_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    unit_price: Decimal = Field(ge=0)
    duration_minutes: int = Field(gt=0)


class SchedulingCreateRequest(BaseModel):
    customer_id: str = Field(min_length=1)
    pet_id: str = Field(min_length=1)
    start_at: datetime
    # defaults to start_at plus the summed service durations
    end_at: datetime | None = None
    services: list[ServiceLine] = Field(min_length=1)
    notes: str | None = None

    @property
    def total_duration_minutes(self) -> int:
        return sum(line.duration_minutes for line in self.services)
