"""
Redis client for the ledger cache.

Redis holds the best-effort copies of ledger summaries and statements that
are served when the database cannot be reached. Nothing financial is ever
written here first.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from pos_backend.app.core.config import settings

logger = logging.getLogger("pos_ledger.cache")

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """Current client, resolved at call time so it can be swapped (tests, reconnects)."""
    return redis_client


async def ping_redis() -> bool:
    """True when the cache answers; a down cache only degrades offline reads."""
    try:
        return bool(await redis_client.ping())
    except (RedisError, OSError) as exc:
        logger.warning("Ledger cache unreachable: %s", exc)
        return False


async def close_redis() -> None:
    await redis_client.aclose()
