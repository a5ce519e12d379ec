"""
Redis client shared by the notification publisher.

Notifications are best effort, so the client uses short socket timeouts:
a slow Redis delays a committed transition by at most
REDIS_SOCKET_TIMEOUT_SECONDS.
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
    """Hide the password part of REDIS_URL for logs"""
    parsed = urlparse(url)
    if parsed.password:
        return url.replace(f":{parsed.password}@", ":****@")
    return url


async def get_redis() -> aioredis.Redis:
    """Process-wide async client, created and pinged on first use"""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    async with _init_lock:
        if _redis_client is None:
            client = aioredis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
                socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
                health_check_interval=30,
            )
            await client.ping()
            _redis_client = client
            logger.info("Redis client initialized", extra_data={
                "url": mask_redis_url(settings.REDIS_URL),
                "socket_timeout": settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            })
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
