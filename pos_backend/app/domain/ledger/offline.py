"""
Offline fallback for ledger reads.

Display-only reads degrade to the last cached copy (flagged stale) when the
database cannot be read. Writes never degrade; they raise instead.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, Type, TypeVar

from pydantic import BaseModel

from pos_backend.app.core.exceptions import LedgerReadError, OfflineUnavailableError
from pos_backend.app.core.reliability import SideEffectResult
from pos_backend.app.services.cache import LedgerCache

logger = logging.getLogger("pos_ledger.offline")

M = TypeVar("M", bound=BaseModel)


@dataclass
class CachedRead(Generic[M]):
    value: M
    cache_write: Optional[SideEffectResult] = None


async def read_through_cache(key: str, load: Callable[[], Awaitable[M]], model: Type[M]) -> CachedRead[M]:
    """
    Load from the database and refresh the cache, or serve the cached copy.

    Raises:
        The original LedgerReadError/OfflineUnavailableError when nothing is cached
    """
    try:
        value = await load()
    except (LedgerReadError, OfflineUnavailableError) as exc:
        cached = await LedgerCache.get(key)
        if cached is None:
            raise
        logger.warning("Serving cached %s after read failure: %s", key, exc.message)
        stale = model.model_validate(cached).model_copy(update={"is_stale": True, "balance_source": "cache"})
        return CachedRead(value=stale)

    cache_write = await LedgerCache.set(key, value.model_dump(mode="json"))
    return CachedRead(value=value, cache_write=cache_write)
