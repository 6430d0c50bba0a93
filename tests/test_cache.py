import asyncio
from datetime import date

import pytest

from telemed_booking.services.slots.cache import AvailabilityCache
from telemed_booking.services.slots.invalidator import invalidate_availability_cache
from telemed_booking.services.slots.overlay import BookingOverlayCache
from telemed_booking.services.slots.types import Scope

from conftest import MONDAY, at


class BrokenBackend:
    async def get(self, key):
        raise ConnectionError("redis down")

    async def set(self, key, value, ttl):
        raise ConnectionError("redis down")

    async def delete_pattern(self, pattern):
        raise ConnectionError("redis down")

    async def add_expiring_member(self, key, member, expire_ts):
        raise ConnectionError("redis down")

    async def live_members(self, key, now_ts):
        raise ConnectionError("redis down")

    async def remove_member(self, key, member):
        raise ConnectionError("redis down")


class HangingBackend(BrokenBackend):
    async def get(self, key):
        await asyncio.sleep(10)


def _key(cache, region="CA", provider="prov-1", page=1):
    return cache.key_for(region, provider, "prac-1", MONDAY, date(2024, 6, 24), page, 50)


def test_key_is_deterministic_and_scoped(availability_cache):
    key = _key(availability_cache)

    assert key == _key(availability_cache)
    assert key != _key(availability_cache, page=2)
    assert key.startswith("test:availability:prov-1:CA:")


@pytest.mark.asyncio
async def test_set_get_and_ttl_expiry(availability_cache, clock):
    key = _key(availability_cache)
    await availability_cache.set(key, {"slots": [1, 2]}, ttl=60)

    assert await availability_cache.get(key) == {"slots": [1, 2]}

    clock.advance(61)
    assert await availability_cache.get(key) is None


@pytest.mark.asyncio
async def test_invalidate_provider_spares_other_providers(availability_cache):
    mine_ca = _key(availability_cache, "CA", "prov-1")
    mine_ny = _key(availability_cache, "NY", "prov-1")
    other = _key(availability_cache, "CA", "prov-2")
    for key in (mine_ca, mine_ny, other):
        await availability_cache.set(key, {"ok": True}, ttl=60)

    deleted = await invalidate_availability_cache(availability_cache, region="CA", provider_id="prov-1")

    assert deleted == 2
    assert await availability_cache.get(mine_ca) is None
    assert await availability_cache.get(mine_ny) is None
    assert await availability_cache.get(other) == {"ok": True}


@pytest.mark.asyncio
async def test_invalidate_unknown_scope_clears_everything(availability_cache):
    for provider in ("prov-1", "prov-2"):
        await availability_cache.set(_key(availability_cache, provider=provider), {}, ttl=60)

    assert await invalidate_availability_cache(availability_cache) == 2


@pytest.mark.asyncio
async def test_corrupt_entry_is_a_miss(availability_cache, backend):
    key = _key(availability_cache)
    await backend.set(key, "{not json", 60)
    assert await availability_cache.get(key) is None


@pytest.mark.asyncio
async def test_backend_failures_degrade_to_miss_and_noop():
    cache = AvailabilityCache(BrokenBackend(), prefix="test")

    assert await cache.get("k") is None
    assert await cache.set("k", {}, 60) is False
    assert await cache.delete_pattern("*") == 0


@pytest.mark.asyncio
async def test_slow_backend_is_bounded_by_timeout():
    cache = AvailabilityCache(HangingBackend(), prefix="test", timeout=0.05)
    assert await cache.get("k") is None


# ── overlay ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_overlay_entries_live_until_ttl(overlay, clock, backend):
    scope = Scope(provider_id="prov-1")
    await overlay.put(scope.key, at("10:00"), at("10:30"), ttl=120, appointment_id="a1", scope=scope)

    entries = await overlay.get_all(scope.key)
    assert [(e.start, e.end, e.appointment_id) for e in entries] == [(at("10:00"), at("10:30"), "a1")]
    assert entries[0].as_appointment().source == "overlay"
    assert entries[0].as_appointment().provider_id == "prov-1"

    clock.advance(121)
    assert await overlay.get_all(scope.key) == []
    # purged on read, nothing left behind
    assert len(backend) == 0


@pytest.mark.asyncio
async def test_overlay_scopes_are_isolated(overlay):
    await overlay.put("provider:prov-1", at("10:00"), at("10:30"), ttl=120)
    assert await overlay.get_all("provider:prov-2") == []


@pytest.mark.asyncio
async def test_overlay_discard_removes_only_that_appointment(overlay):
    scope = Scope(provider_id="prov-1")
    await overlay.put(scope.key, at("10:00"), at("10:30"), ttl=120, appointment_id="a1", scope=scope)
    await overlay.put(scope.key, at("11:00"), at("11:30"), ttl=120, appointment_id="a2", scope=scope)

    assert await overlay.discard(scope.key, "a1") == 1

    remaining = await overlay.get_all(scope.key)
    assert [e.appointment_id for e in remaining] == ["a2"]


@pytest.mark.asyncio
async def test_overlay_failure_is_not_fatal():
    overlay = BookingOverlayCache(BrokenBackend(), prefix="test")

    assert await overlay.put("provider:p", at("10:00"), at("10:30"), ttl=120) is False
    assert await overlay.get_all("provider:p") == []
    assert await overlay.discard("provider:p", "a1") == 0


@pytest.mark.asyncio
async def test_overlay_records_under_every_scope_dimension(overlay):
    scope = Scope(provider_id="prov-1", resource_id="room-1")
    assert await overlay.record(scope, at("10:00"), at("10:30"), ttl=120, appointment_id="a1")

    assert len(await overlay.get_all("provider:prov-1")) == 1
    assert len(await overlay.get_all("resource:room-1")) == 1
    # read back once even though stored under two keys
    assert len(await overlay.get_for_scope(scope)) == 1
    assert len(await overlay.get_for_scope(Scope(resource_id="room-1"))) == 1

    assert await overlay.forget(scope, "a1") == 2
    assert await overlay.get_for_scope(scope) == []
