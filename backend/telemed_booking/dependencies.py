from fastapi import Header, HTTPException, Request, status

from .config import settings
from .services.scheduling import SchedulingFacade
from .services.settings_store import SettingsStore
from .services.slots.cache import AvailabilityCache


def get_facade(request: Request) -> SchedulingFacade:
    return request.app.state.facade


def get_settings_store(request: Request) -> SettingsStore:
    return request.app.state.facade.settings_store


def get_availability_cache(request: Request) -> AvailabilityCache:
    return request.app.state.facade.cache


def require_admin(x_admin_api_key: str | None = Header(None)) -> None:
    # no key configured → admin endpoints are closed
    if not settings.admin_api_key or x_admin_api_key != settings.admin_api_key:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin API key required")
