"""
Shared Redis client accessor plus small JSON cache / pub-sub helpers.

Redis is optional: every helper degrades to a no-op (or a cache miss) when the
client was never initialized or the server errors, so price reads and pool
transitions never depend on it.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

POOL_UPDATES_CHANNEL = "pool_updates"

_redis_client: Optional[aioredis.Redis] = None


async def init_redis(url: str) -> aioredis.Redis:
    """Initialize the shared Redis connection. Called once during app lifespan startup."""
    global _redis_client
    client = aioredis.from_url(url, encoding="utf-8", decode_responses=False)
    await client.ping()
    _redis_client = client
    return _redis_client


def get_redis_client() -> Optional[aioredis.Redis]:
    """Get the shared Redis client. Returns None if not initialized."""
    return _redis_client


async def close_redis() -> None:
    """Close the shared Redis connection. Called during app lifespan shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.close()
        _redis_client = None


async def cache_get_json(redis: Optional[aioredis.Redis], key: str) -> Any:
    if redis is None:
        return None
    try:
        raw = await redis.get(key)
    except Exception as e:
        logger.debug(f"Redis read failed for {key}: {e}")
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Discarding malformed cache entry {key}")
        return None


async def cache_set_json(
    redis: Optional[aioredis.Redis], key: str, value: Any, ttl_seconds: int
) -> None:
    if redis is None:
        return
    try:
        await redis.setex(key, ttl_seconds, json.dumps(value))
    except Exception as e:
        logger.debug(f"Redis write failed for {key}: {e}")


async def publish_pool_update(pool_id: str, status: str, at: str) -> None:
    """Best-effort fan-out of a pool transition. Observers may always poll instead."""
    redis = get_redis_client()
    if redis is None:
        return
    payload = json.dumps({"pool_id": pool_id, "status": status, "at": at})
    try:
        await redis.publish(POOL_UPDATES_CHANNEL, payload)
    except Exception as e:
        logger.warning(f"Could not publish pool update for {pool_id}: {e}")
