"""Unit tests for the circuit breaker and persistent tier guard."""

import asyncio
import time
from unittest.mock import AsyncMock, patch

import pytest

from portalfinder.cache.guard import CacheCircuitBreaker, PersistentTierGuard
from portalfinder.core.exceptions import CacheIOError, CorruptEntryError


class TestCacheCircuitBreaker:
    """Tests for CacheCircuitBreaker state transitions."""

    def test_starts_closed(self):
        breaker = CacheCircuitBreaker()
        assert breaker.state == "closed"
        assert breaker.can_attempt()

    def test_opens_at_threshold(self):
        """Test the circuit opens after threshold consecutive failures."""
        breaker = CacheCircuitBreaker(failure_threshold=3, timeout=60)
        breaker.on_failure()
        breaker.on_failure()
        assert breaker.state == "closed"

        breaker.on_failure()
        assert breaker.state == "open"
        assert not breaker.can_attempt()

    def test_success_resets_failure_count(self):
        """Test failures must be consecutive to open the circuit."""
        breaker = CacheCircuitBreaker(failure_threshold=2)
        breaker.on_failure()
        breaker.on_success()
        breaker.on_failure()

        assert breaker.state == "closed"

    def test_half_open_after_timeout(self):
        """Test an open circuit allows a probe once the timeout passes."""
        breaker = CacheCircuitBreaker(failure_threshold=1, timeout=60)
        breaker.on_failure()

        with patch("portalfinder.cache.guard.time.time", return_value=time.time() + 61):
            assert breaker.can_attempt()
        assert breaker.state == "half_open"

    def test_half_open_success_closes(self):
        breaker = CacheCircuitBreaker(failure_threshold=1, timeout=0)
        breaker.on_failure()
        breaker.last_failure_time = time.time() - 1

        assert breaker.can_attempt()
        breaker.on_success()
        assert breaker.state == "closed"
        assert breaker.failure_count == 0

    def test_half_open_failure_reopens(self):
        breaker = CacheCircuitBreaker(failure_threshold=5, timeout=0)
        breaker.state = "half_open"

        breaker.on_failure()
        assert breaker.state == "open"

    def test_reset(self):
        breaker = CacheCircuitBreaker(failure_threshold=1)
        breaker.on_failure()
        breaker.reset()

        assert breaker.state == "closed"
        assert breaker.failure_count == 0
        assert breaker.last_failure_time is None


class TestPersistentTierGuard:
    """Tests for PersistentTierGuard.call()."""

    @pytest.fixture
    def guard(self):
        return PersistentTierGuard(
            CacheCircuitBreaker(failure_threshold=2, timeout=60), timeout=0.05
        )

    async def test_passes_result_through(self, guard):
        func = AsyncMock(return_value=42)

        assert await guard.call("count", func, "arg") == 42
        func.assert_awaited_once_with("arg")
        assert guard.error_count == 0
        assert not guard.last_call_failed

    async def test_timeout_becomes_cache_io_error(self, guard):
        """Test a slow backend call is abandoned."""

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(CacheIOError, match="timed out"):
            await guard.call("get", slow)
        assert guard.error_count == 1
        assert guard.last_call_failed

    async def test_backend_error_becomes_cache_io_error(self, guard):
        func = AsyncMock(side_effect=ConnectionError("refused"))

        with pytest.raises(CacheIOError) as exc_info:
            await guard.call("upsert", func)

        assert exc_info.value.details == {"operation": "upsert"}
        assert guard.last_error == "upsert: refused"

    async def test_cache_io_error_reraised_unchanged(self, guard):
        error = CacheIOError("pool closed")
        func = AsyncMock(side_effect=error)

        with pytest.raises(CacheIOError) as exc_info:
            await guard.call("get", func)
        assert exc_info.value is error

    async def test_corrupt_entry_is_not_a_failure(self, guard):
        """Test a corrupt row passes through without tripping the breaker."""
        func = AsyncMock(side_effect=CorruptEntryError("bad json", fingerprint="a" * 64))

        for _ in range(3):
            with pytest.raises(CorruptEntryError):
                await guard.call("get", func)

        assert guard.error_count == 0
        assert guard.breaker.state == "closed"

    async def test_open_circuit_skips_call(self, guard):
        """Test calls are rejected without reaching the backend once open."""
        failing = AsyncMock(side_effect=OSError("down"))
        for _ in range(2):
            with pytest.raises(CacheIOError):
                await guard.call("get", failing)
        assert guard.breaker.state == "open"

        func = AsyncMock(return_value=1)
        with pytest.raises(CacheIOError, match="Circuit breaker open"):
            await guard.call("get", func)
        func.assert_not_awaited()

    async def test_success_clears_last_call_failed(self, guard):
        with pytest.raises(CacheIOError):
            await guard.call("get", AsyncMock(side_effect=OSError("down")))
        await guard.call("get", AsyncMock(return_value=None))

        assert not guard.last_call_failed
        assert guard.error_count == 1

    async def test_failed_within_window(self, guard):
        """Test an earlier failure stays visible for the window."""
        with pytest.raises(CacheIOError):
            await guard.call("get", AsyncMock(side_effect=OSError("down")))
        await guard.call("get", AsyncMock(return_value=None))

        assert guard.failed_within(60)
        with patch("portalfinder.cache.guard.time.time", return_value=time.time() + 61):
            assert not guard.failed_within(60)

    def test_no_failures(self, guard):
        assert not guard.failed_within(300)
