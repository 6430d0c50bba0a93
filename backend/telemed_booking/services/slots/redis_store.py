# backend/telemed_booking/services/slots/redis_store.py
"""
Cache backends for availability lists and the booking overlay.

Plain values:   SET key value EX ttl
Expiring sets:  Sorted Set where member = payload, score = expire_ts
                (unix timestamp when the member stops being live).

Query: ZRANGEBYSCORE key (now +inf → only live members.
Expired members are purged on read, and the key itself carries an
EXPIREAT a minute past its newest member so an abandoned set never
outlives its entries.
"""

import fnmatch
import time
from contextlib import asynccontextmanager
from typing import Callable, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ...exceptions import CacheError


KEY_EXPIRY_BUFFER = 60  # seconds past the newest member


@asynccontextmanager
async def _redis_errors(operation: str):
    try:
        yield
    except RedisError as e:
        raise CacheError(f"Redis {operation} failed: {e!r}") from e


def _decode(value):
    return value.decode() if isinstance(value, bytes) else value


class CacheBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def delete_pattern(self, pattern: str) -> int: ...

    async def add_expiring_member(self, key: str, member: str, expire_ts: float) -> None: ...

    async def live_members(self, key: str, now_ts: float) -> list[tuple[str, float]]: ...

    async def remove_member(self, key: str, member: str) -> int: ...


class RedisCacheBackend:
    """Redis storage wrapper (redis.asyncio). Redis errors surface as CacheError."""

    SCAN_COUNT = 100

    def __init__(self, redis: aioredis.Redis):
        self.redis = redis

    # ── Plain values ─────────────────────────────────────────────────────

    async def get(self, key: str) -> str | None:
        async with _redis_errors("get"):
            return _decode(await self.redis.get(key))

    async def set(self, key: str, value: str, ttl: int) -> None:
        async with _redis_errors("set"):
            await self.redis.setex(key, ttl, value)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern (SCAN, never KEYS)."""
        deleted = 0
        batch: list[str] = []
        async with _redis_errors("delete"):
            async for key in self.redis.scan_iter(match=pattern, count=self.SCAN_COUNT):
                batch.append(key)
                if len(batch) >= self.SCAN_COUNT:
                    deleted += await self.redis.delete(*batch)
                    batch = []
            if batch:
                deleted += await self.redis.delete(*batch)
        return deleted

    # ── Expiring sets ────────────────────────────────────────────────────

    async def add_expiring_member(self, key: str, member: str, expire_ts: float) -> None:
        pipe = self.redis.pipeline(transaction=True)
        pipe.zadd(key, {member: expire_ts})
        pipe.zremrangebyscore(key, "-inf", time.time())
        # Key lives until its newest member expires + buffer
        pipe.expireat(key, int(expire_ts) + KEY_EXPIRY_BUFFER)
        async with _redis_errors("zadd"):
            await pipe.execute()

    async def live_members(self, key: str, now_ts: float) -> list[tuple[str, float]]:
        pipe = self.redis.pipeline(transaction=True)
        pipe.zremrangebyscore(key, "-inf", now_ts)
        pipe.zrangebyscore(key, f"({now_ts}", "+inf", withscores=True)
        async with _redis_errors("zrangebyscore"):
            _, raw = await pipe.execute()
        return [(_decode(m), float(score)) for m, score in raw]

    async def remove_member(self, key: str, member: str) -> int:
        async with _redis_errors("zrem"):
            return await self.redis.zrem(key, member)


class MemoryCacheBackend:
    """
    In-process backend with the same TTL semantics.

    Used in tests and when Redis is disabled. Not shared between processes.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._values: dict[str, tuple[str, float]] = {}
        self._sets: dict[str, dict[str, float]] = {}

    async def get(self, key: str) -> str | None:
        item = self._values.get(key)
        if item is None:
            return None
        value, expire_ts = item
        if expire_ts <= self.clock():
            del self._values[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._values[key] = (value, self.clock() + ttl)

    async def delete_pattern(self, pattern: str) -> int:
        deleted = 0
        for store in (self._values, self._sets):
            for key in [k for k in store if fnmatch.fnmatchcase(k, pattern)]:
                del store[key]
                deleted += 1
        return deleted

    async def add_expiring_member(self, key: str, member: str, expire_ts: float) -> None:
        members = self._sets.setdefault(key, {})
        members[member] = expire_ts
        self._purge(key, self.clock())

    async def live_members(self, key: str, now_ts: float) -> list[tuple[str, float]]:
        self._purge(key, now_ts)
        members = self._sets.get(key, {})
        return sorted(members.items(), key=lambda item: (item[1], item[0]))

    async def remove_member(self, key: str, member: str) -> int:
        members = self._sets.get(key)
        if not members or member not in members:
            return 0
        del members[member]
        if not members:
            del self._sets[key]
        return 1

    def _purge(self, key: str, now_ts: float) -> None:
        members = self._sets.get(key)
        if members is None:
            return
        for member in [m for m, ts in members.items() if ts <= now_ts]:
            del members[member]
        if not members:
            del self._sets[key]

    def __len__(self) -> int:
        return len(self._values) + len(self._sets)
