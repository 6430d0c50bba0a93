# backend/telemed_booking/schemas/appointments.py

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator


class AppointmentCreate(BaseModel):
    start: datetime
    end: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(None, gt=0)

    region: Optional[str] = None
    provider_id: Optional[str] = None
    resource_id: Optional[str] = None
    patient_id: Optional[str] = None
    practice_id: Optional[str] = None

    reason: Optional[str] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def _end_after_start(self):
        if self.end is not None and self.end <= self.start:
            raise ValueError("end must be after start")
        return self

    def details(self) -> dict:
        """Free-form fields forwarded to the practice-management system."""
        return {
            k: v for k, v in {"reason": self.reason, "notes": self.notes}.items()
            if v is not None
        }


class AppointmentRead(BaseModel):
    id: Optional[str] = None
    start: datetime
    end: datetime
    provider_id: Optional[str] = None
    practice_id: Optional[str] = None

    original_start: datetime
    original_end: datetime
    auto_adjusted: bool = False
    shifts: int = 0

    model_config = {"from_attributes": True}


class AppointmentUpdate(BaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    status: Optional[str] = None
    notes: Optional[str] = None

    # scope of the appointment, for overlay and cache bookkeeping
    provider_id: Optional[str] = None
    resource_id: Optional[str] = None
    patient_id: Optional[str] = None

    @model_validator(mode="after")
    def _end_needs_start(self):
        if self.end is not None and self.start is None:
            raise ValueError("end can only be changed together with start")
        if self.start is not None and self.end is not None and self.end <= self.start:
            raise ValueError("end must be after start")
        return self


class AppointmentCancelRead(BaseModel):
    id: str
    cancelled: bool = True


class RescheduleCreate(AppointmentCreate):
    original_start: Optional[datetime] = None
    original_end: Optional[datetime] = None


class RescheduleRead(BaseModel):
    status: str = Field(description="rescheduled | restored | original_lost")
    degraded: bool
    cancelled_id: str
    appointment: Optional[AppointmentRead] = None
    restored_id: Optional[str] = None
    error: Optional[str] = None
