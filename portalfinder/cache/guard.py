"""Fail-open guard around persistent-tier calls.

Every persistent operation goes through PersistentTierGuard, which applies a
timeout, counts failures and trips a circuit breaker. Any failure surfaces as
CacheIOError so CacheService can degrade to a miss or a no-op store.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from portalfinder.core.exceptions import CacheIOError, CorruptEntryError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheCircuitBreaker:
    """Circuit breaker for persistent-tier failures with automatic recovery.

    States:
        closed: Normal operation, persistent tier used
        open: Circuit tripped, persistent tier bypassed entirely
        half_open: Testing recovery, single request allowed

    Pattern:
        closed -> (consecutive failures >= threshold) -> open
        open -> (timeout expired) -> half_open
        half_open -> (success) -> closed
        half_open -> (failure) -> open
    """

    def __init__(self, failure_threshold: int = 5, timeout: int = 300):
        """Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening circuit
            timeout: Seconds before attempting recovery from open state
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.failure_count = 0
        self.state = "closed"  # closed, open, half_open
        self.last_failure_time: float | None = None

    def on_success(self) -> None:
        """Record successful operation."""
        if self.state == "half_open":
            logger.info("Circuit breaker recovered, closing circuit")
            self.state = "closed"
        self.failure_count = 0

    def on_failure(self) -> None:
        """Record failed operation and potentially open circuit."""
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            if self.state != "open":
                logger.warning(
                    f"Circuit breaker opened after {self.failure_count} failures"
                )
            self.state = "open"

    def can_attempt(self) -> bool:
        """Check if a persistent operation should be attempted."""
        if self.state == "closed":
            return True

        if self.state == "open":
            if (
                self.last_failure_time is not None
                and time.time() - self.last_failure_time > self.timeout
            ):
                logger.info("Circuit breaker timeout expired, entering half-open state")
                self.state = "half_open"
                return True
            return False

        # half_open state: allow single attempt
        return True

    def reset(self) -> None:
        """Manually reset circuit breaker to closed state."""
        self.state = "closed"
        self.failure_count = 0
        self.last_failure_time = None


class PersistentTierGuard:
    """Timeout + circuit breaker + error accounting for store calls."""

    def __init__(
        self,
        breaker: CacheCircuitBreaker,
        timeout: float = 5.0,
    ):
        self.breaker = breaker
        self.timeout = timeout
        self.error_count = 0
        self.last_error: str | None = None
        self.last_failure_at: float | None = None
        self.last_call_failed = False

    async def call(
        self,
        operation: str,
        func: Callable[..., Awaitable[T]],
        *args: Any,
    ) -> T:
        """Run a persistent-tier coroutine under the guard.

        Raises:
            CacheIOError: Circuit open, timeout or backend failure
            CorruptEntryError: Stored payload could not be deserialized
        """
        if not self.breaker.can_attempt():
            raise CacheIOError(
                f"Circuit breaker open, skipping {operation}",
                details={"operation": operation},
            )

        try:
            result = await asyncio.wait_for(func(*args), timeout=self.timeout)
        except CorruptEntryError:
            # The backend answered; only the row is bad
            self._record_success()
            raise
        except asyncio.TimeoutError as e:
            self._record_failure(operation, f"timed out after {self.timeout}s")
            raise CacheIOError(
                f"{operation} timed out after {self.timeout}s",
                details={"operation": operation},
            ) from e
        except Exception as e:
            self._record_failure(operation, str(e))
            if isinstance(e, CacheIOError):
                raise
            raise CacheIOError(
                f"{operation} failed: {e}", details={"operation": operation}
            ) from e

        self._record_success()
        return result

    def failed_within(self, seconds: float) -> bool:
        """Whether the last call failed or any failure happened in the window."""
        if self.last_call_failed:
            return True
        return (
            self.last_failure_at is not None
            and time.time() - self.last_failure_at <= seconds
        )

    def _record_success(self) -> None:
        self.breaker.on_success()
        self.last_call_failed = False

    def _record_failure(self, operation: str, message: str) -> None:
        self.error_count += 1
        self.last_error = f"{operation}: {message}"
        self.last_failure_at = time.time()
        self.last_call_failed = True
        self.breaker.on_failure()
        logger.warning(f"Persistent tier {operation} failed: {message}")
