"""Host-owned availability inputs: weekly rules, event types and busy blocks."""

from datetime import time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from scheduling.engine.intervals import Interval
from scheduling.models.common import UTCDateTime

# Day-of-week numbering follows the persisted rules: 0 = Sunday ... 6 = Saturday.
SUNDAY = 0
SATURDAY = 6


class AvailabilityRule(BaseModel):
    """Recurring weekly window in the owner's wall-clock time."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    owner_id: str
    day_of_week: int = Field(ge=SUNDAY, le=SATURDAY)
    start_time: time
    end_time: time
    buffer_minutes: int = Field(default=0, ge=0)
    max_bookings_per_day: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def check_window(self) -> "AvailabilityRule":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class EventQuestion(BaseModel):
    """Extra question shown to guests when booking."""

    model_config = ConfigDict(frozen=True)

    label: str = Field(min_length=1, max_length=200)
    kind: Literal["text", "email", "phone"] = "text"
    required: bool = False


class EventType(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    name: str = ""
    duration_minutes: int = Field(default=30, ge=5, le=480)
    buffer_before_minutes: int = Field(default=0, ge=0, le=120)
    buffer_after_minutes: int = Field(default=0, ge=0, le=120)
    minimum_notice_minutes: int = Field(default=120, ge=0, le=20160)
    maximum_advance_minutes: int = Field(default=43200, ge=1440, le=525600)
    booking_horizon_days: int = Field(default=60, ge=1, le=365)
    requires_confirmation: bool = False
    is_active: bool = True
    questions: list[EventQuestion] = Field(default_factory=list)


class BusyBlock(BaseModel):
    """Time reported busy by an external calendar."""

    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    start: UTCDateTime
    end: UTCDateTime
    source: str | None = None

    @model_validator(mode="after")
    def check_order(self) -> "BusyBlock":
        if self.start >= self.end:
            raise ValueError("start must be before end")
        return self

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)
