"""
Redis connection helpers.

The composition cache and the daily usage limiter share one async client.
A missing or unreachable Redis is never fatal: callers get None and fall
back to in-process storage.
"""
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from core.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[aioredis.Redis] = None


def get_redis_client() -> Optional[aioredis.Redis]:
    """Get or create the shared async Redis client."""
    global _redis_client
    if _redis_client is None:
        try:
            _redis_client = aioredis.from_url(
                settings.REDIS_URL,
                decode_responses=False,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        except (RedisError, ValueError) as e:
            logger.warning(f"Redis client unavailable: {e}")
            _redis_client = None
    return _redis_client


async def close_redis_client() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
