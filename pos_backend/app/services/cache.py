"""
Ledger Cache Service.

Best-effort Redis copies of ledger summaries and statements, served (flagged
stale) when the database cannot be reached. Writes go through the cache
circuit breaker and never fail the calling read.
"""

import json
import logging
from datetime import date
from typing import Any, Dict, Optional

from redis.exceptions import RedisError

from pos_backend.app.core.config import settings
from pos_backend.app.core.redis_client import get_redis
from pos_backend.app.core.reliability import CircuitOpenError, SideEffectResult, cache_circuit_breaker

logger = logging.getLogger("pos_ledger.cache")

CACHE_ERRORS = (RedisError, CircuitOpenError, OSError)


class LedgerCache:

    @staticmethod
    def summary_key(tenant_id: int, customer_id: int) -> str:
        return f"ledger:summary:{tenant_id}:{customer_id}"

    @staticmethod
    def statement_key(
        tenant_id: int,
        customer_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ) -> str:
        window = f"{date_from or '*'}:{date_to or '*'}"
        return f"ledger:statement:{tenant_id}:{customer_id}:{window}"

    @staticmethod
    async def get(key: str) -> Optional[Dict[str, Any]]:
        """Cached payload, or None when missing or Redis is unavailable."""
        client = await get_redis()
        try:
            raw = await cache_circuit_breaker.call(client.get, key)
        except CACHE_ERRORS as exc:
            logger.warning("Ledger cache read failed for %s: %s", key, exc)
            return None
        if not raw:
            return None
        return json.loads(raw)

    @staticmethod
    async def set(key: str, payload: Dict[str, Any], ttl_seconds: int = None) -> SideEffectResult:
        client = await get_redis()
        try:
            await cache_circuit_breaker.call(
                client.set, key, json.dumps(payload), ex=ttl_seconds or settings.ledger_cache_ttl_seconds
            )
        except CACHE_ERRORS as exc:
            logger.warning("Ledger cache write failed for %s: %s", key, exc)
            return SideEffectResult.failure("ledger_cache", exc)
        return SideEffectResult.success("ledger_cache")

