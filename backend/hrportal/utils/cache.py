"""Redis caching for resolved permission sets.

Resolved sets are shared across backend instances so a request does not
re-query roles and overrides when nothing changed. Keys are always tenant
scoped:

    t:{tenant_id}:perms:{user_id}

Any Redis failure degrades to uncached resolution; it never fails a
request.
"""

import json
import logging
from typing import Optional

import redis.asyncio as redis
from hrportal.config import settings
from hrportal.tenancy import _tenant_ctx

logger = logging.getLogger(__name__)

PERMS_PREFIX = "perms"

# Global Redis connection pool
_redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Get or create Redis client connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
    return _redis_client


async def close_redis():
    """Close Redis connection (call on app shutdown)."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def cache_enabled() -> bool:
    return settings.permission_cache_ttl > 0


def permissions_key(tenant_id: str, user_id: str) -> str:
    return f"t:{tenant_id}:{PERMS_PREFIX}:{user_id}"


async def get_cached_permissions(tenant_id: str, user_id: str) -> dict | None:
    """Return the cached resolved-set payload, or None on miss / Redis error."""
    if not cache_enabled():
        return None
    key = permissions_key(tenant_id, user_id)
    try:
        redis_client = await get_redis()
        cached_value = await redis_client.get(key)
    except redis.RedisError as e:
        logger.warning(f"Redis error (falling back to uncached): {e}")
        return None

    if cached_value:
        logger.debug(f"Cache HIT: {key}")
        return json.loads(cached_value)
    logger.debug(f"Cache MISS: {key}")
    return None


async def set_cached_permissions(tenant_id: str, user_id: str, payload: dict) -> None:
    if not cache_enabled():
        return
    try:
        redis_client = await get_redis()
        await redis_client.setex(
            permissions_key(tenant_id, user_id),
            settings.permission_cache_ttl,
            json.dumps(payload),
        )
    except redis.RedisError as e:
        logger.warning(f"Failed to cache permissions: {e}")


async def invalidate_cache(pattern: str, tenant_id: str | None = None):
    """Invalidate cache keys matching a pattern, scoped to a tenant.

    The tenant defaults to the request's tenant context. If neither is
    available the pattern is used as-is.

    Example:
        await invalidate_cache("perms:*", tenant_id)  # every user of the tenant
    """
    tenant = tenant_id or _tenant_ctx.get()
    scoped_pattern = f"t:{tenant}:{pattern}" if tenant else pattern
    try:
        redis_client = await get_redis()
        keys = []
        async for key in redis_client.scan_iter(match=scoped_pattern):
            keys.append(key)

        if keys:
            await redis_client.delete(*keys)
            logger.info(f"Invalidated {len(keys)} cache keys matching {scoped_pattern}")
    except redis.RedisError as e:
        logger.warning(f"Failed to invalidate cache: {e}")


async def invalidate_tenant_permissions(tenant_id: str) -> None:
    """Drop every cached resolved set of a tenant (role or catalog change)."""
    if cache_enabled():
        await invalidate_cache(f"{PERMS_PREFIX}:*", tenant_id)


async def invalidate_user_permissions(tenant_id: str, user_id: str) -> None:
    """Drop one user's cached resolved set (override or membership change)."""
    if not cache_enabled():
        return
    try:
        redis_client = await get_redis()
        await redis_client.delete(permissions_key(tenant_id, user_id))
    except redis.RedisError as e:
        logger.warning(f"Failed to invalidate cache: {e}")


async def invalidate_all_permissions() -> None:
    """Drop cached resolved sets of every tenant (catalog change)."""
    if not cache_enabled():
        return
    pattern = f"t:*:{PERMS_PREFIX}:*"
    try:
        redis_client = await get_redis()
        keys = [key async for key in redis_client.scan_iter(match=pattern)]
        if keys:
            await redis_client.delete(*keys)
            logger.info(f"Invalidated {len(keys)} cache keys matching {pattern}")
    except redis.RedisError as e:
        logger.warning(f"Failed to invalidate cache: {e}")
