# backend/telemed_booking/services/slots/invalidator.py
"""
Cache invalidation for availability responses.

Triggers:
✓ Appointment created / updated / cancelled → invalidate provider (all regions)
✓ Settings or blackout changed → invalidate everything
✓ Scope unknown → invalidate everything
"""

import logging

from .cache import AvailabilityCache

logger = logging.getLogger(__name__)


async def invalidate_availability_cache(
    cache: AvailabilityCache,
    region: str | None = None,
    provider_id: str | None = None,
) -> int:
    """
    Invalidate cached availability for a scope.

    A booking only affects its provider, so when the provider is known the
    region is not narrowed further: one provider may serve several regions.
    Without a provider the affected scope is unknown and everything goes.

    Returns:
        Number of deleted cache keys
    """
    if provider_id is not None:
        pattern = cache.scope_pattern(provider_id=provider_id)
    else:
        pattern = cache.scope_pattern()

    deleted = await cache.delete_pattern(pattern)
    logger.info(
        f"Invalidated availability cache: region={region} provider={provider_id} "
        f"pattern={pattern} deleted={deleted}"
    )
    return deleted
