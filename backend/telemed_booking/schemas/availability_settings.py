# backend/telemed_booking/schemas/availability_settings.py
"""
Pydantic schemas for availability settings (business hours, blackouts).
"""

import re
from datetime import date
from typing import Annotated
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AfterValidator, BaseModel, Field, field_validator, model_validator


WEEKDAYS = (
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
)

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _check_hhmm(value: str) -> str:
    if not _HHMM.match(value):
        raise ValueError(f"time must be HH:MM, got {value!r}")
    return value


HHMM = Annotated[str, AfterValidator(_check_hhmm)]


class DayHours(BaseModel):
    """Business hours of one weekday."""
    start: HHMM
    end: HHMM
    enabled: bool = True

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def _start_before_end(self):
        if self.start >= self.end:
            raise ValueError(f"start {self.start} must be before end {self.end}")
        return self


class BlockedTimeSlot(BaseModel):
    date: date
    start_time: HHMM
    end_time: HHMM

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def _start_before_end(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

    @property
    def identity(self) -> tuple[date, str, str]:
        return self.date, self.start_time, self.end_time


def default_business_hours() -> dict[str, DayHours]:
    weekday = {"start": "09:00", "end": "17:00", "enabled": True}
    weekend = {"start": "09:00", "end": "13:00", "enabled": False}
    return {
        day: DayHours(**(weekday if i < 5 else weekend))
        for i, day in enumerate(WEEKDAYS)
    }


class AvailabilitySettings(BaseModel):
    """
    Business rules applied to generated slots.

    Every weekday is always present in business_hours; blocked_dates is
    kept sorted and free of duplicates.
    """
    business_hours: dict[str, DayHours] = Field(default_factory=default_business_hours)
    blocked_dates: list[date] = []
    blocked_time_slots: list[BlockedTimeSlot] = []
    advance_booking_days: int = Field(14, ge=0)
    slot_duration: int = Field(30, gt=0, le=24 * 60)
    buffer_time: int = Field(0, ge=0)
    max_slots_per_day: int | None = Field(None, gt=0)
    timezone: str = "America/Los_Angeles"

    model_config = {"from_attributes": True}

    @field_validator("business_hours", mode="before")
    @classmethod
    def _normalize_days(cls, value):
        if isinstance(value, dict):
            return {str(k).lower(): v for k, v in value.items()}
        return value

    @field_validator("business_hours")
    @classmethod
    def _all_weekdays(cls, value: dict[str, DayHours]):
        missing = [d for d in WEEKDAYS if d not in value]
        unknown = [d for d in value if d not in WEEKDAYS]
        if missing or unknown:
            raise ValueError(f"business_hours must define exactly the 7 weekdays "
                             f"(missing={missing}, unknown={unknown})")
        return {d: value[d] for d in WEEKDAYS}

    @field_validator("blocked_dates")
    @classmethod
    def _unique_dates(cls, value: list[date]):
        return sorted(set(value))

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str):
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone {value!r}")
        return value

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def hours_for(self, day: date) -> DayHours:
        return self.business_hours[WEEKDAYS[day.weekday()]]


class AvailabilitySettingsUpdate(BaseModel):
    """Partial update; unset fields keep their current value."""
    business_hours: dict[str, DayHours] | None = None
    advance_booking_days: int | None = Field(None, ge=0)
    slot_duration: int | None = Field(None, gt=0, le=24 * 60)
    buffer_time: int | None = Field(None, ge=0)
    max_slots_per_day: int | None = Field(None, gt=0)
    timezone: str | None = None

    model_config = {"from_attributes": True}


class BusinessHoursUpdate(BaseModel):
    start: str
    end: str
    enabled: bool = True


class BlockDateRequest(BaseModel):
    date: date


class BlockTimeSlotRequest(BaseModel):
    date: date
    start_time: str
    end_time: str


class AvailabilitySettingsResponse(BaseModel):
    settings: AvailabilitySettings
    invalidated_keys: int = 0
