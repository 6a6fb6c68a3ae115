"""Two-tier query-result cache.

Caches expensive search results keyed by a fingerprint of the normalized
query plus state and city. A bounded in-process memory tier sits in front of
a PostgreSQL persistent tier. The cache fails open: when the database is
unavailable, lookups miss and stores are no-ops.

Key Features:
    - Query normalization (case, punctuation, stop words) before hashing
    - LRU memory tier (FIFO optional) with 24-hour TTL
    - Synonym resolution for alternate phrasings ("dl" -> "driving license")
    - Daily hit/miss statistics and popular query tracking
    - Background expiry sweeps and a circuit breaker on the persistent tier

Usage:
    >>> from portalfinder.cache import CacheService, CacheConfig, InMemoryCacheStore
    >>>
    >>> cache = CacheService(InMemoryCacheStore(), CacheConfig())
    >>> await cache.start()
    >>>
    >>> result = await cache.lookup("Passport renewal", "Kerala", "Kochi")
    >>> if result is None:
    >>>     result = await search_portals("Passport renewal", "Kerala", "Kochi")
    >>>     await cache.store("Passport renewal", "Kerala", "Kochi", result)
"""

from portalfinder.cache.guard import CacheCircuitBreaker, PersistentTierGuard
from portalfinder.cache.keys import generate_cache_key, normalize_query
from portalfinder.cache.memory import MemoryTier
from portalfinder.cache.models import (
    CacheConfig,
    CacheEntry,
    CacheHealth,
    CacheStats,
    CacheStatsReport,
    CacheStatsSummary,
    DailyStat,
    PopularQueryRecord,
    SynonymMapping,
)
from portalfinder.cache.service import CacheService
from portalfinder.cache.stores import CacheStore, InMemoryCacheStore, PostgresCacheStore

__all__ = [
    "CacheService",
    "CacheConfig",
    "CacheStats",
    "CacheCircuitBreaker",
    "PersistentTierGuard",
    # Tiers
    "MemoryTier",
    "CacheStore",
    "InMemoryCacheStore",
    "PostgresCacheStore",
    # Keys
    "normalize_query",
    "generate_cache_key",
    # Models
    "CacheEntry",
    "CacheHealth",
    "CacheStatsReport",
    "CacheStatsSummary",
    "DailyStat",
    "PopularQueryRecord",
    "SynonymMapping",
]
