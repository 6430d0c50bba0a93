import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from .config import settings
from .redis_client import create_redis_client
from .routers import appointments, availability
from .services.practice_management import HttpPracticeManagementClient
from .services.retry import RetryPolicy
from .services.scheduling import SchedulingFacade
from .services.settings_store import SettingsStore
from .services.slots.cache import AvailabilityCache
from .services.slots.config import get_booking_config
from .services.slots.overlay import BookingOverlayCache
from .services.slots.redis_store import MemoryCacheBackend, RedisCacheBackend

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    redis = None
    if settings.redis_enabled:
        redis = create_redis_client()
        backend = RedisCacheBackend(redis)
    else:
        logger.warning("Redis disabled: cache and booking overlay are process-local")
        backend = MemoryCacheBackend()

    config = get_booking_config()
    pm_client = HttpPracticeManagementClient(
        settings.pm_base_url, settings.pm_api_key, settings.pm_timeout,
    )
    app.state.redis = redis
    app.state.facade = SchedulingFacade(
        settings_store=SettingsStore(),
        pm_client=pm_client,
        cache=AvailabilityCache(backend, settings.cache_prefix, config.cache_timeout_seconds),
        overlay=BookingOverlayCache(backend, settings.cache_prefix, config.cache_timeout_seconds),
        config=config,
        region_mapping=settings.region_mapping,
        retry=RetryPolicy.from_settings(),
    )
    logger.info(f"Scheduling engine started, regions={sorted(settings.region_mapping)}")

    try:
        yield
    finally:
        await pm_client.aclose()
        if redis is not None:
            await redis.aclose()


app = FastAPI(title="Telemedicine Booking API", lifespan=lifespan)

app.include_router(availability.router)
app.include_router(appointments.router)


@app.get("/health")
async def health(request: Request):
    redis = request.app.state.redis
    if redis is None:
        return {"redis": None}
    try:
        return {"redis": await redis.ping()}
    except Exception as e:
        logger.warning(f"Redis health check failed: {e!r}")
        return {"redis": False}
