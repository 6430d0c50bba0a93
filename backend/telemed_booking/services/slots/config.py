# backend/telemed_booking/services/slots/config.py
"""
Engine configuration for availability and conflict resolution.
"""

from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache

from ...config import settings


@dataclass(frozen=True)
class BookingConfig:
    """
    Tuning for the slots engine.

    Attributes:
        shift_increment_minutes: Forward shift step of the conflict resolver
        shift_max_attempts: Maximum shifts before giving up (24 × 15 min = 6 hours)
        availability_cache_ttl_seconds: TTL of filtered availability lists
        overlay_ttl_seconds: How long a just-confirmed booking is kept in the overlay
        cache_timeout_seconds: Upper bound for a single cache operation
        page_size: Default number of slots per page
        max_page_size: Hard cap for the page size
    """
    shift_increment_minutes: int = 15
    shift_max_attempts: int = 24
    availability_cache_ttl_seconds: int = 60
    overlay_ttl_seconds: int = 120
    cache_timeout_seconds: float = 2.0
    page_size: int = 50
    max_page_size: int = 200

    def __post_init__(self):
        """Validate configuration."""
        if self.shift_increment_minutes <= 0:
            raise ValueError(f"shift_increment_minutes must be positive, got {self.shift_increment_minutes}")
        if self.shift_max_attempts <= 0:
            raise ValueError(f"shift_max_attempts must be positive, got {self.shift_max_attempts}")
        if self.overlay_ttl_seconds <= 0:
            raise ValueError("overlay_ttl_seconds must be positive")

    @property
    def shift_increment(self) -> timedelta:
        return timedelta(minutes=self.shift_increment_minutes)


def time_str_to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight."""
    hour, minute = value.split(":")
    return int(hour) * 60 + int(minute)


@lru_cache
def get_booking_config() -> BookingConfig:
    """Booking configuration (singleton), read from application settings."""
    return BookingConfig(
        shift_increment_minutes=settings.shift_increment_minutes,
        shift_max_attempts=settings.shift_max_attempts,
        availability_cache_ttl_seconds=settings.availability_cache_ttl,
        overlay_ttl_seconds=settings.overlay_ttl,
        cache_timeout_seconds=settings.cache_timeout,
    )
