"""
Redis client wrappers.

Responsibilities:
  • Feed cache       — STRING (JSON) keyed by feed:{user_id}:{namespace}:{fingerprint}
  • Feed namespace   — counter keyed by feed:{user_id}:ns, bumped to invalidate
  • Profile cache    — STRING (JSON) keyed by profile:{user_id}
  • Snapshots        — similarity / trending generations (see snapshot_store)
  • Runtime tuning   — HASH feed_engine:tuning
  • Locks            — affinity-lock:{user_id}
  • Ingest failures  — HASH ingest:failures (interaction id -> failed attempts)

The API uses the asyncio client; Celery workers use the sync client.
"""
import logging
from typing import Optional

import redis
import redis.asyncio as aioredis

from feed_engine.config import get_settings

logger = logging.getLogger(__name__)

_redis: Optional[aioredis.Redis] = None
_sync_redis: Optional[redis.Redis] = None


async def init_redis() -> aioredis.Redis:
    global _redis
    settings = get_settings()
    _redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    try:
        await _redis.ping()
        logger.info("Redis connected at %s", settings.redis_url)
    except redis.RedisError as e:
        # Caches degrade to misses; the feed still serves
        logger.warning("Redis not reachable at startup (%s); continuing without cache", e)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    if _redis is None:
        raise RuntimeError("Redis not initialised; call init_redis() at startup")
    return _redis


def get_sync_redis() -> redis.Redis:
    """Process-wide sync client for Celery workers."""
    global _sync_redis
    if _sync_redis is None:
        _sync_redis = redis.from_url(get_settings().redis_url, decode_responses=True, socket_timeout=5)
    return _sync_redis
