# backend/telemed_booking/services/slots/availability.py
"""
Availability calculation.

Pipeline for one scope and date range:
  1. candidate slots from business hours (calculator.py)
  2. existing appointments: practice-management query + booking overlay
  3. drop slots that conflict (conflicts.py)
  4. business rules: past, advance window, blackouts, per-day cap (rules.py)

Caching is the caller's concern (services/scheduling.py).
"""

import logging
from datetime import date, datetime, timedelta

from ...exceptions import ExternalQueryError
from ...schemas.availability_settings import AvailabilitySettings
from ..practice_management import PracticeManagementClient
from ..retry import RetryPolicy, call_with_retry
from .calculator import generate_candidate_slots
from .conflicts import filter_conflicting_slots, overlaps
from .overlay import BookingOverlayCache
from .rules import apply_business_rules
from .types import CandidateSlot, ExistingAppointment, Scope

logger = logging.getLogger(__name__)


async def fetch_existing_appointments(
    pm_client: PracticeManagementClient,
    overlay: BookingOverlayCache,
    scope: Scope,
    start: datetime,
    end: datetime,
    practice_id: str | None = None,
    *,
    fail_open: bool,
    retry: RetryPolicy = RetryPolicy(),
) -> list[ExistingAppointment]:
    """
    Appointments of `scope` touching [start, end): upstream ones plus the
    overlay entries the upstream may not show yet.

    fail_open=True (availability): an upstream failure is logged and the
    overlay alone is used. fail_open=False (booking): ExternalQueryError
    propagates.
    """
    try:
        external = await call_with_retry(
            lambda: pm_client.query_appointments(scope, start, end, practice_id),
            attempts=retry.attempts,
            timeout=retry.timeout,
            base_delay=retry.base_delay,
            error_cls=ExternalQueryError,
            description="appointment query",
        )
    except ExternalQueryError as e:
        if not fail_open:
            raise
        logger.warning(f"Appointment query failed, continuing without upstream data: {e}")
        external = []

    pending = [
        entry.as_appointment()
        for entry in await overlay.get_for_scope(scope)
        if overlaps(entry.start, entry.end, start, end)
    ]
    if pending:
        logger.debug(f"Merged {len(pending)} overlay bookings for {scope.key}")

    return [*external, *pending]


async def calculate_availability(
    rules: AvailabilitySettings,
    scope: Scope,
    practice_id: str | None,
    from_date: date,
    to_date: date,
    pm_client: PracticeManagementClient,
    overlay: BookingOverlayCache,
    now: datetime,
    retry: RetryPolicy = RetryPolicy(),
) -> list[CandidateSlot]:
    """
    Bookable slots for one scope between from_date and to_date (inclusive).

    Returns:
        Slots sorted by start.
    """
    candidates = generate_candidate_slots(
        from_date,
        to_date,
        rules.slot_duration,
        provider_id=scope.provider_id,
        practice_id=practice_id,
        business_hours=rules.business_hours,
        tz=rules.tz,
        resource_id=scope.resource_id,
    )
    if not candidates:
        return []

    # buffer pads existing appointments at the end, so look back by it
    window_start = candidates[0].start - timedelta(minutes=rules.buffer_time)
    window_end = candidates[-1].end

    existing = await fetch_existing_appointments(
        pm_client, overlay, scope, window_start, window_end, practice_id,
        fail_open=True, retry=retry,
    )

    available = filter_conflicting_slots(
        candidates, existing, rules.slot_duration, rules.buffer_time,
    )
    return apply_business_rules(available, rules, now)
