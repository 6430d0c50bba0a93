# backend/telemed_booking/services/slots/__init__.py
"""
Slots engine.

Pure:     candidate generation, conflict filter, business rules, resolver
Stateful: availability cache, booking overlay (Redis or in-memory backend)

The I/O pipeline lives in .availability and is imported from there.
"""

from .config import BookingConfig, get_booking_config
from .calculator import generate_candidate_slots
from .conflicts import overlaps, busy_intervals, filter_conflicting_slots
from .rules import apply_business_rules
from .resolver import resolve_booking_interval
from .redis_store import RedisCacheBackend, MemoryCacheBackend
from .cache import AvailabilityCache
from .overlay import BookingOverlayCache
from .invalidator import invalidate_availability_cache

__all__ = [
    "BookingConfig",
    "get_booking_config",
    "generate_candidate_slots",
    "overlaps",
    "busy_intervals",
    "filter_conflicting_slots",
    "apply_business_rules",
    "resolve_booking_interval",
    "RedisCacheBackend",
    "MemoryCacheBackend",
    "AvailabilityCache",
    "BookingOverlayCache",
    "invalidate_availability_cache",
]
