# backend/telemed_booking/schemas/slots.py
"""
Pydantic schemas for the availability API.
"""

from datetime import date, datetime
from pydantic import BaseModel, Field


class SlotRead(BaseModel):
    """One bookable slot."""
    start: datetime
    end: datetime
    provider_id: str | None = None
    practice_id: str | None = None
    resource_id: str | None = None
    duration: int = Field(description="Slot length in minutes")

    model_config = {"from_attributes": True}


class PaginationMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool
    next_page: int | None = None
    previous_page: int | None = None


class AvailabilityResponse(BaseModel):
    """Response with one page of available slots for a region."""
    region: str
    provider_id: str | None = None
    provider_name: str | None = None
    practice_id: str | None = None
    timezone: str
    from_date: date
    to_date: date
    slot_duration: int
    slots: list[SlotRead]
    meta: PaginationMeta

    cached: bool = False

    model_config = {"from_attributes": True}
