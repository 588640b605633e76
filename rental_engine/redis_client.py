"""
Shared Redis connection.

Holds the reservation/vehicle locks and the upload relay sessions. Relay
sessions exist only here, so losing Redis loses every open session.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from rental_engine.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

_redis_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Get the process-wide Redis client, creating it on first use."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            health_check_interval=30,
        )
    return _redis_client


async def redis_is_healthy(redis_client: redis.Redis) -> bool:
    """Ping Redis; a failure is reported, not raised."""
    try:
        return bool(await redis_client.ping())
    except (RedisError, OSError) as e:
        logger.warning(f"Redis ping failed: {e}")
        return False


async def close_redis() -> None:
    """Close the shared client on shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
