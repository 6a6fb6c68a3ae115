"""Pytest configuration and fixtures for PortalFinder tests."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from portalfinder.cache.models import CacheConfig, CacheEntry, utcnow
from portalfinder.cache.service import CacheService
from portalfinder.cache.stores import InMemoryCacheStore


def _make_entry(
    fingerprint: str = "a" * 64,
    query: str = "passport renewal",
    state: str = "Kerala",
    city: str = "Kochi",
    ttl: float = 3600,
    result: dict | None = None,
) -> CacheEntry:
    """Build a live CacheEntry for tests."""
    now = utcnow()
    return CacheEntry(
        fingerprint=fingerprint,
        original_query=query,
        normalized_query=query,
        state=state,
        city=city,
        result=result if result is not None else {"services": [{"title": query}]},
        created_at=now,
        updated_at=now,
        expires_at=now + timedelta(seconds=ttl),
        last_accessed_at=now,
    )


@pytest.fixture
def make_entry():
    """Factory for live CacheEntry objects."""
    return _make_entry


@pytest.fixture
def sample_result():
    """Result payload in the shape the search layer produces."""
    return {
        "services": [
            {"title": "Passport Seva", "office": "Regional Passport Office"},
            {"title": "mPassport Police App", "office": "Kerala Police"},
        ]
    }


@pytest.fixture
def memory_store():
    """In-process persistent tier."""
    return InMemoryCacheStore()


@pytest.fixture
def cache_config():
    """Cache configuration with long sweep intervals so tasks stay idle."""
    return CacheConfig(
        ttl=3600,
        memory_size=100,
        persistent_cleanup_interval=3600,
        memory_cleanup_interval=3600,
        operation_timeout=1.0,
        circuit_breaker_threshold=3,
        circuit_breaker_timeout=60,
    )


@pytest.fixture
async def cache_service(memory_store, cache_config):
    """Started CacheService over the in-process store."""
    service = CacheService(memory_store, cache_config)
    await service.start()
    yield service
    await service.stop()


@pytest.fixture
def mock_connection():
    """Mock asyncpg connection with async methods."""
    conn = MagicMock()
    conn.execute = AsyncMock(return_value="INSERT 0 1")
    conn.executemany = AsyncMock(return_value=None)
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])

    transaction = MagicMock()
    transaction.__aenter__ = AsyncMock(return_value=None)
    transaction.__aexit__ = AsyncMock(return_value=None)
    conn.transaction = MagicMock(return_value=transaction)
    return conn


@pytest.fixture
def mock_pool(mock_connection):
    """Mock asyncpg pool whose acquire() yields mock_connection."""
    async_ctx_manager = AsyncMock()
    async_ctx_manager.__aenter__ = AsyncMock(return_value=mock_connection)
    async_ctx_manager.__aexit__ = AsyncMock(return_value=None)

    pool = MagicMock()
    pool.acquire = MagicMock(return_value=async_ctx_manager)
    pool.close = AsyncMock()
    pool.terminate = MagicMock()
    return pool
