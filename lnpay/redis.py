"""
Redis client for the webhook delivery cache.

The cache is a fast path in front of the webhook_deliveries table, so every
call is short-timeout and callers treat Redis errors as a cache miss.
"""

from typing import Optional
import logging

from redis import asyncio as aioredis
from redis.asyncio.client import Redis
from redis.exceptions import RedisError

from lnpay.config import settings

logger = logging.getLogger(__name__)


class RedisClient:
    """Process-wide async Redis client."""

    _client: Optional[Redis] = None

    @classmethod
    def get_client(cls) -> Redis:
        if cls._client is None:
            cls._client = aioredis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=settings.redis_socket_timeout_seconds,
                socket_connect_timeout=settings.redis_connect_timeout_seconds,
                retry_on_timeout=False,
                health_check_interval=30,
            )
            logger.info(
                f"Redis client initialized (timeout {settings.redis_socket_timeout_seconds}s)"
            )

        return cls._client

    @classmethod
    async def close(cls):
        if cls._client:
            await cls._client.aclose()
            cls._client = None
            logger.info("Redis client closed")


async def get_redis() -> Redis:
    return RedisClient.get_client()


async def redis_available() -> bool:
    """Ping the delivery cache; False when it cannot be reached."""
    try:
        redis = await get_redis()
        await redis.ping()
    except (RedisError, OSError) as e:
        logger.warning(f"Redis ping failed: {e}")
        return False
    return True
