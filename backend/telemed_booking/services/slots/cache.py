# backend/telemed_booking/services/slots/cache.py
"""
TTL cache of filtered availability responses.

Key format: {prefix}:availability:{provider_id}:{region}:{digest}
digest = sha256 of the sorted query parameters (dates, practice, pagination).

Provider comes first so one pattern invalidates a provider across every
region it serves. Any backend failure degrades to a miss / no-op.
"""

import asyncio
import hashlib
import json
import logging
from datetime import date

from .redis_store import CacheBackend

logger = logging.getLogger(__name__)


class AvailabilityCache:
    KEY_PREFIX = "availability"

    def __init__(self, backend: CacheBackend, prefix: str = "tmb", timeout: float = 2.0):
        self.backend = backend
        self.prefix = prefix
        self.timeout = timeout

    def key_for(
        self,
        region: str,
        provider_id: str | None,
        practice_id: str | None,
        from_date: date,
        to_date: date,
        page: int,
        limit: int,
    ) -> str:
        params = {
            "region": region,
            "provider_id": provider_id,
            "practice_id": practice_id,
            "from_date": from_date.isoformat(),
            "to_date": to_date.isoformat(),
            "page": page,
            "limit": limit,
        }
        digest = hashlib.sha256(
            json.dumps(params, sort_keys=True).encode()
        ).hexdigest()[:32]
        return f"{self.prefix}:{self.KEY_PREFIX}:{provider_id or '-'}:{region}:{digest}"

    def scope_pattern(self, region: str | None = None, provider_id: str | None = None) -> str:
        """Glob matching every cached response of a scope; all responses when unknown."""
        return (
            f"{self.prefix}:{self.KEY_PREFIX}:"
            f"{provider_id if provider_id is not None else '*'}:"
            f"{region if region is not None else '*'}:*"
        )

    async def get(self, key: str) -> dict | None:
        try:
            raw = await asyncio.wait_for(self.backend.get(key), self.timeout)
        except Exception as e:
            logger.warning(f"Availability cache get failed, treating as miss: {key} → {e!r}")
            return None

        if raw is None:
            logger.debug(f"Availability cache miss: {key}")
            return None

        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Corrupt availability cache entry, ignoring: {key}")
            return None

    async def set(self, key: str, value: dict, ttl: int) -> bool:
        try:
            payload = json.dumps(value)
            await asyncio.wait_for(self.backend.set(key, payload, ttl), self.timeout)
            return True
        except Exception as e:
            logger.warning(f"Availability cache set failed: {key} → {e!r}")
            return False

    async def delete_pattern(self, pattern: str) -> int:
        try:
            return await asyncio.wait_for(self.backend.delete_pattern(pattern), self.timeout)
        except Exception as e:
            logger.warning(f"Availability cache delete failed: {pattern} → {e!r}")
            return 0
