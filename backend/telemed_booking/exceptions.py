"""
Error types raised by the scheduling core.

Read paths degrade (cache and external read failures are logged and
swallowed where the caller asks for fail-open behaviour); write paths
always propagate.
"""

from datetime import datetime


class SchedulingError(Exception):
    """Base class for all scheduling core errors."""


class ConfigurationError(SchedulingError):
    """Settings are malformed or missing. Surfaced to the admin, never retried."""


class SettingsWriteError(SchedulingError):
    """Settings could not be persisted."""


class UnsupportedRegion(SchedulingError):
    def __init__(self, region: str):
        super().__init__(f"Unsupported region: {region}")
        self.region = region


class CacheError(SchedulingError):
    """Cache backend failure. Always non-fatal."""


class ExternalServiceError(SchedulingError):
    """Practice-management system call failed."""

    def __init__(self, message: str, *, transient: bool = False, status_code: int | None = None):
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


class ExternalQueryError(ExternalServiceError):
    """Reading appointments from the practice-management system failed."""


class ExternalWriteError(ExternalServiceError):
    """Create/update/cancel was rejected or did not complete upstream."""


class NoSlotFound(SchedulingError):
    """The resolver exhausted its shift attempts without finding a free interval."""

    def __init__(self, start: datetime, end: datetime, attempts: int):
        super().__init__(
            f"No free interval found for {start.isoformat()}–{end.isoformat()} "
            f"after {attempts} shifts"
        )
        self.start = start
        self.end = end
        self.attempts = attempts
