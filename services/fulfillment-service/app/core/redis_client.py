"""
Fulfillment Service — Redis client (cache entries, generation counters, event channels)

One client per process. create_app() builds it only when caching is enabled
and no client was injected, and its lifespan closes what it opened.
"""
import logging

import redis.asyncio as aioredis

from app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)
_redis_client: aioredis.Redis | None = None


def get_redis(settings: Settings | None = None) -> aioredis.Redis:
    global _redis_client
    if _redis_client is None:
        settings = settings or get_settings()
        _redis_client = aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            client_name=settings.SERVICE_NAME,
            socket_connect_timeout=settings.HEALTH_CHECK_TIMEOUT,
            # timeouts surface as RedisError and the cache is bypassed
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            health_check_interval=30,
        )
        logger.info("Redis client configured for %s:%s/%s",
                    settings.REDIS_HOST, settings.REDIS_PORT, settings.REDIS_DB)
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
