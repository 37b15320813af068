"""
config/redis_client.py
Async Redis client. Only used when RATE_LIMIT_BACKEND=redis so that
several API instances share one set of rate-limit windows.
"""

import logging
from typing import Optional

import redis.asyncio as aioredis

from config.settings import settings

logger = logging.getLogger(__name__)

# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    # Test connection
    await redis_client.ping()
    logger.info("Redis connected")


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
    redis_client = None


def get_redis() -> aioredis.Redis:
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client
