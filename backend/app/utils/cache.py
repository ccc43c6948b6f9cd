"""Redis cache for ledger snapshots.

Snapshots are read far more often than ledgers change (reporting,
rendering, reminder jobs).  Keys are namespaced by organization:

    t:{organization_id}:ledger:{invoice_id}

Every ledger mutation invalidates its invoice's key after the transaction
commits.  Redis is optional: any Redis failure is logged and the caller
falls back to reading the database.
"""

import json
import logging
from typing import Optional

import redis.asyncio as redis

from app.config import settings
from app.schemas.invoice import LedgerSnapshot

logger = logging.getLogger(__name__)

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


def ledger_key(organization_id: str, invoice_id: str) -> str:
    return f"t:{organization_id}:ledger:{invoice_id}"


async def get_cached_snapshot(organization_id: str, invoice_id: str) -> LedgerSnapshot | None:
    if not settings.cache_enabled:
        return None
    key = ledger_key(organization_id, invoice_id)
    try:
        redis_client = await get_redis()
        cached_value = await redis_client.get(key)
    except redis.RedisError as e:
        logger.warning(f"Redis error (falling back to uncached): {e}")
        return None

    if not cached_value:
        logger.debug(f"Cache MISS: {key}")
        return None
    logger.debug(f"Cache HIT: {key}")
    return LedgerSnapshot.model_validate(json.loads(cached_value))


async def cache_snapshot(organization_id: str, snapshot: LedgerSnapshot) -> None:
    if not settings.cache_enabled:
        return
    try:
        redis_client = await get_redis()
        await redis_client.setex(
            ledger_key(organization_id, snapshot.invoice_id),
            settings.ledger_cache_ttl,
            snapshot.model_dump_json(),
        )
    except redis.RedisError as e:
        logger.warning(f"Failed to cache ledger snapshot: {e}")


async def invalidate_ledger(organization_id: str, *invoice_ids: str) -> None:
    """Drop cached snapshots; call after the mutating transaction commits."""
    if not settings.cache_enabled or not invoice_ids:
        return
    try:
        redis_client = await get_redis()
        await redis_client.delete(*(ledger_key(organization_id, i) for i in invoice_ids))
        logger.info(f"Invalidated ledger cache for {len(invoice_ids)} invoice(s)")
    except redis.RedisError as e:
        logger.warning(f"Failed to invalidate cache: {e}")
