# backend/telemed_booking/services/slots/types.py
"""
Value types shared by the slots engine.

All datetimes are timezone-aware.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import NamedTuple


class Interval(NamedTuple):
    """Half-open time interval [start, end)."""
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


@dataclass(frozen=True)
class Scope:
    """
    Identity dimension used to decide whether two appointments conflict.

    Precedence is provider, then resource, then patient (see conflicts.in_scope).
    """
    provider_id: str | None = None
    resource_id: str | None = None
    patient_id: str | None = None

    @property
    def key(self) -> str:
        """Overlay key of this scope, by the same precedence."""
        if self.provider_id is not None:
            return f"provider:{self.provider_id}"
        if self.resource_id is not None:
            return f"resource:{self.resource_id}"
        if self.patient_id is not None:
            return f"patient:{self.patient_id}"
        return "unscoped"

    @property
    def keys(self) -> list[str]:
        """One overlay key per dimension that is set."""
        return [
            f"{name}:{value}"
            for name, value in (
                ("provider", self.provider_id),
                ("resource", self.resource_id),
                ("patient", self.patient_id),
            )
            if value is not None
        ]


@dataclass(frozen=True)
class CandidateSlot:
    start: datetime
    end: datetime
    provider_id: str | None
    practice_id: str | None
    duration: int  # minutes
    resource_id: str | None = None

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    @property
    def scope(self) -> Scope:
        return Scope(provider_id=self.provider_id, resource_id=self.resource_id)


@dataclass(frozen=True)
class ExistingAppointment:
    """Read-only view of an appointment owned by the practice-management system."""
    start: datetime
    end: datetime | None = None
    provider_id: str | None = None
    resource_id: str | None = None
    patient_id: str | None = None
    status: str | None = None
    id: str | None = None
    source: str = "external"  # "external" | "overlay"

    @property
    def is_cancelled(self) -> bool:
        # Cancelled, Canceled, CancelledByPatient, ...
        return (self.status or "").strip().lower().startswith("cancel")

    def interval(self, default_duration: timedelta, buffer: timedelta = timedelta(0)) -> Interval:
        end = self.end if self.end is not None and self.end > self.start else self.start + default_duration
        return Interval(self.start, end + buffer)


@dataclass(frozen=True)
class Resolution:
    """Outcome of the conflict resolver."""
    original: Interval
    resolved: Interval
    shifts: int

    @property
    def adjusted(self) -> bool:
        return self.resolved != self.original


@dataclass
class BookingResult:
    appointment_id: str | None
    start: datetime
    end: datetime
    original_start: datetime
    original_end: datetime
    shifts: int = 0
    provider_id: str | None = None
    practice_id: str | None = None
    upstream: dict = field(default_factory=dict)

    @property
    def auto_adjusted(self) -> bool:
        return (self.start, self.end) != (self.original_start, self.original_end)


@dataclass
class RescheduleResult:
    """
    status:
        rescheduled: old cancelled, new booked
        restored: new booking failed, original interval re-booked
        original_lost: new booking failed and the original could not be re-booked
    """
    status: str
    cancelled_appointment_id: str
    booking: BookingResult | None = None
    restored_appointment_id: str | None = None
    error: str | None = None

    @property
    def degraded(self) -> bool:
        return self.status != "rescheduled"
