"""
Redis Client - async singleton.

משמש את מטמון השיוך הגאוגרפי (GEO_CACHE_BACKEND=redis) ואת בדיקת
המוכנות. REDIS_URL מהקונפיגורציה.
"""
import asyncio
from urllib.parse import urlparse

import redis.asyncio as aioredis

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None
_init_lock = asyncio.Lock()


def mask_redis_url(url: str) -> str:
    """redis://:secret@host:6379 -> redis://:****@host:6379"""
    parsed = urlparse(url)
    if parsed.password:
        return url.replace(f":{parsed.password}@", ":****@")
    return url


async def get_redis() -> aioredis.Redis:
    """Redis client יחיד לתהליך (connection pool)"""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    async with _init_lock:
        if _redis_client is not None:
            return _redis_client

        client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
        await client.ping()
        _redis_client = client
        logger.info("Redis client initialized", extra_data={"url": mask_redis_url(settings.REDIS_URL)})
    return _redis_client


async def close_redis() -> None:
    """סגירת החיבור ב-shutdown"""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
