# backend/telemed_booking/services/slots/resolver.py
"""
Booking conflict resolution.

Moves a requested interval forward in fixed increments until it no longer
overlaps any busy interval. Forward only, duration preserved, bounded by
max_attempts shifts.

Pure: the caller fetches busy intervals (already scoped, see
conflicts.busy_intervals) and wide enough to cover the furthest shift.
"""

from datetime import datetime, timedelta
from typing import Iterable

from ...exceptions import NoSlotFound
from .conflicts import overlaps
from .types import Interval, Resolution


def resolve_booking_interval(
    requested: Interval,
    busy: Iterable[Interval],
    increment: timedelta = timedelta(minutes=15),
    max_attempts: int = 24,
) -> Resolution:
    """
    Find the first free interval at or after the requested one.

    Raises:
        NoSlotFound: still conflicting after max_attempts shifts.
    """
    if increment <= timedelta(0):
        raise ValueError("increment must be positive")
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    if requested.end <= requested.start:
        raise ValueError("requested interval must have a positive duration")

    duration = requested.end - requested.start
    busy = list(busy)

    candidate: datetime = requested.start
    attempts = 0
    while True:
        candidate_end = candidate + duration
        if not any(overlaps(candidate, candidate_end, b.start, b.end) for b in busy):
            return Resolution(
                original=requested,
                resolved=Interval(candidate, candidate_end),
                shifts=attempts,
            )

        candidate += increment
        attempts += 1
        if attempts >= max_attempts:
            raise NoSlotFound(requested.start, requested.end, attempts)


def search_window(requested: Interval, increment: timedelta, max_attempts: int) -> Interval:
    """Range of time the resolver may inspect for `requested`."""
    return Interval(requested.start, requested.end + increment * max_attempts)
