"""
app/core/cache.py

Async Redis Client

Shared redis.asyncio client used for webhook delivery dedup.
When REDIS_URL is empty the client is None and callers fall back
to the job state precondition checks alone.
"""

import logging

import redis.asyncio as redis

from app.core.config import settings

# ---------------------------------------------------
# Logger Configuration
# ---------------------------------------------------
logger = logging.getLogger(__name__)

# ---------------------------------------------------
# Redis Client Initialization
# ---------------------------------------------------
redis_client: redis.Redis | None = None  # type: ignore[type-arg]

if settings.REDIS_URL:
    try:
        redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        logger.info(f"[REDIS ASYNC] Initialized async Redis client for {settings.REDIS_URL}")
    except (redis.RedisError, ValueError) as e:
        logger.error(f"[REDIS ASYNC] Initialization failed: {e}")
        redis_client = None
else:
    logger.info("[REDIS ASYNC] REDIS_URL not set, Redis features disabled.")


def get_redis() -> redis.Redis | None:  # type: ignore[type-arg]
    """Dependency returning the shared Redis client, or None when disabled."""
    return redis_client
