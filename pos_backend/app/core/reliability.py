"""
Reliability Utilities.

Includes the circuit breaker used around the Redis ledger cache, the
optimistic-concurrency retry loop used by ledger writers and the result type
for non-fatal side effects.
"""

import time
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Any, Optional, TypeVar

from pos_backend.app.core.exceptions import ConcurrentModificationError

logger = logging.getLogger("pos_ledger.reliability")

T = TypeVar("T")


class CircuitOpenError(Exception):
    """Raised instead of calling a dependency that is known to be down."""


class CircuitBreaker:
    """
    Stops calling a failing dependency for a while.

    After failure_threshold consecutive failures the circuit opens and calls
    fail fast with CircuitOpenError. Once reset_timeout seconds pass, one
    trial call is let through (HALF_OPEN); success closes the circuit again.
    """
    def __init__(self, name: str, failure_threshold: int = 5, reset_timeout: int = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.opened_at = 0.0
        self.state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        if self.state == "OPEN":
            if time.monotonic() - self.opened_at < self.reset_timeout:
                raise CircuitOpenError(f"Circuit {self.name} is OPEN")
            self.state = "HALF_OPEN"

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        if self.state == "HALF_OPEN" or self.failures:
            self.reset_state()
        return result

    def record_failure(self):
        self.failures += 1
        if self.state == "HALF_OPEN" or self.failures >= self.failure_threshold:
            if self.state != "OPEN":
                logger.warning("Circuit %s opened after %s failure(s)", self.name, self.failures)
            self.state = "OPEN"
            self.opened_at = time.monotonic()

    def reset_state(self):
        if self.state != "CLOSED":
            logger.info("Circuit %s closed", self.name)
        self.failures = 0
        self.state = "CLOSED"


async def retry_on_conflict(
    attempt: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    on_conflict: Callable[[], Awaitable[None]] = None
) -> T:
    """
    Run a unit of work, re-running it with a fresh read on conflict.

    Args:
        attempt: Coroutine factory performing one complete read-compute-write
        max_attempts: Total attempts before the conflict is surfaced
        on_conflict: Cleanup awaited between attempts (typically a rollback)

    Returns:
        Result of the first attempt that does not conflict

    Raises:
        ConcurrentModificationError: If every attempt conflicted
    """
    for attempt_no in range(1, max_attempts + 1):
        try:
            return await attempt()
        except ConcurrentModificationError as exc:
            if on_conflict is not None:
                await on_conflict()
            if attempt_no == max_attempts:
                raise
            logger.warning(
                "Ledger conflict on attempt %s/%s for customer %s, retrying",
                attempt_no, max_attempts, exc.details.get("customer_id")
            )


# Global instance for the Redis-backed ledger cache
cache_circuit_breaker = CircuitBreaker("ledger_cache", failure_threshold=3, reset_timeout=30)


@dataclass(frozen=True)
class SideEffectResult:
    """
    Outcome of a secondary write (audit log, cache) that must never fail the
    primary financial operation. Reported next to the primary result.
    """
    name: str
    ok: bool
    error: Optional[str] = None

    @classmethod
    def success(cls, name: str) -> "SideEffectResult":
        return cls(name=name, ok=True)

    @classmethod
    def failure(cls, name: str, error: BaseException) -> "SideEffectResult":
        return cls(name=name, ok=False, error=f"{type(error).__name__}: {error}")
