"""
Redis connection and stream names.

The dispatch stream producer, its consumer and the metrics emitter share
one async client per process.
"""

from typing import Optional
from redis.asyncio import Redis as AsyncRedis
from signalrelay.core.config import settings

async_redis_client: Optional[AsyncRedis] = None


async def get_async_redis() -> AsyncRedis:
    """Get async Redis client."""
    global async_redis_client
    if async_redis_client is None:
        async_redis_client = AsyncRedis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
        )
    return async_redis_client


async def close_redis() -> None:
    global async_redis_client
    if async_redis_client is not None:
        await async_redis_client.close()
        async_redis_client = None


class StreamNames:
    """Redis Stream names for the event bus."""

    SIGNAL_DISPATCH = "signal-dispatch"
    METRICS = "metrics"


class ConsumerGroups:
    """Consumer group names for Redis Streams."""

    ALERT_DISPATCHERS = "alert-dispatchers"
