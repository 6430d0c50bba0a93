import redis.asyncio as aioredis

from .config import settings


def create_redis_client(url: str = settings.redis_url) -> aioredis.Redis:
    # decode_responses=True → str instead of bytes
    return aioredis.from_url(
        url,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
    )
