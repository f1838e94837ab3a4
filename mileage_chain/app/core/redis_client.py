"""
Redis client initialization and connection management.

Redis backs the cross-process lease half of the per-vehicle chain lock.
"""

import redis.asyncio as redis
from redis.exceptions import RedisError
from mileage_chain.app.core.config import settings


# Create async Redis client
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """
    Get Redis client instance.

    Used as a FastAPI dependency so tests can swap in an in-memory double.
    """
    return redis_client


async def ping_redis() -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except RedisError:
        return False
