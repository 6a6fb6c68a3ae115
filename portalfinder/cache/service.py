"""Two-tier query-result cache service.

CacheService is the single entry point for the serving path and for
operators:

    lookup / store          serving path, fail-open
    stats / popular_queries reporting
    clear_expired / clear_all / health
                            maintenance

Design Philosophy:
    The cache is an OPTIONAL optimization. A broken persistent tier turns
    every lookup into a miss and every store into a no-op, never into an
    error on the serving path. health() makes the degradation visible.
"""

import time
from datetime import timedelta
from typing import Any

from portalfinder.cache.analytics import PopularQueryTracker, StatsAggregator, format_rate
from portalfinder.cache.guard import CacheCircuitBreaker, PersistentTierGuard
from portalfinder.cache.keys import generate_cache_key, normalize_query
from portalfinder.cache.memory import MemoryTier
from portalfinder.cache.models import (
    CacheConfig,
    CacheEntry,
    CacheHealth,
    CacheStats,
    CacheStatsReport,
    PopularQueryRecord,
    utcnow,
)
from portalfinder.cache.scheduler import CleanupScheduler
from portalfinder.cache.stores import CacheStore
from portalfinder.cache.strategies import (
    LookupContext,
    LookupHit,
    LookupStrategy,
    MemoryLookup,
    PersistentLookup,
    SynonymLookup,
)
from portalfinder.cache.synonyms import SynonymResolver
from portalfinder.core.exceptions import (
    CacheIOError,
    CorruptEntryError,
    InitializationError,
    ValidationError,
)
from portalfinder.observability.logging import LogEvents, get_logger

logger = get_logger(__name__)


class CacheService:
    """Orchestrates the memory tier, persistent tier and analytics.

    Example:
        >>> service = CacheService(InMemoryCacheStore(), CacheConfig())
        >>> await service.start()
        >>> if await service.lookup("passport renewal", "Kerala", "Kochi") is None:
        ...     result = await generate_result(...)
        ...     await service.store("passport renewal", "Kerala", "Kochi", result)
        >>> await service.stop()
    """

    def __init__(self, store: CacheStore, config: CacheConfig | None = None):
        """Initialize cache service.

        Args:
            store: Persistent tier backend
            config: Cache configuration (defaults used when omitted)
        """
        self.config = config or CacheConfig()
        self.persistent = store
        self.memory = MemoryTier(
            max_size=self.config.memory_size, eviction=self.config.memory_eviction
        )
        self.circuit_breaker = CacheCircuitBreaker(
            failure_threshold=self.config.circuit_breaker_threshold,
            timeout=self.config.circuit_breaker_timeout,
        )
        self.guard = PersistentTierGuard(
            self.circuit_breaker, timeout=self.config.operation_timeout
        )
        self.synonyms = SynonymResolver(store)
        self.aggregator = StatsAggregator(store)
        self.popular = PopularQueryTracker(store, self.config.result_count_key)
        self.scheduler = CleanupScheduler(
            store,
            self.memory,
            persistent_interval=self.config.persistent_cleanup_interval,
            memory_interval=self.config.memory_cleanup_interval,
            guard=self.guard,
        )
        self.strategies: list[LookupStrategy] = [
            MemoryLookup(self.memory),
            PersistentLookup(store, self.guard),
            SynonymLookup(store, self.synonyms, self.guard),
        ]
        self.counters = CacheStats()
        self.initialized = False
        self.init_error: str | None = None

    async def start(self) -> bool:
        """Seed synonyms and start background cleanup.

        A startup failure leaves the service in degraded no-cache mode
        (lookups miss, stores no-op) instead of raising.

        Returns:
            True if the cache is initialized
        """
        if not self.config.enabled:
            logger.info(LogEvents.CACHE_DEGRADED, reason="disabled by configuration")
            return False

        try:
            await self._initialize()
        except InitializationError as e:
            self.initialized = False
            self.init_error = e.message
            logger.error(LogEvents.CACHE_DEGRADED, reason=e.message)
            return False

        self.scheduler.start()
        self.initialized = True
        self.init_error = None
        logger.info(
            LogEvents.CACHE_STARTED,
            ttl=self.config.ttl,
            memory_size=self.config.memory_size,
            eviction=self.config.memory_eviction,
        )
        return True

    async def _initialize(self) -> None:
        try:
            await self.guard.call("seed_synonyms", self.synonyms.seed)
        except CacheIOError as e:
            raise InitializationError(
                f"Persistent tier unavailable at startup: {e.message}",
                details=e.details,
            ) from e

    async def stop(self) -> None:
        """Stop background cleanup. Must run before the pool is closed."""
        await self.scheduler.stop()
        logger.info(LogEvents.CACHE_STOPPED)

    async def lookup(self, query: str, state: str, city: str) -> dict[str, Any] | None:
        """Return the cached result for (query, state, city), or None.

        Tries memory, then the persistent tier, then the persistent tier
        again under the synonym-resolved query. Every completed lookup is
        recorded in the daily statistics.

        Raises:
            ValidationError: If query, state or city is blank
        """
        self._validate(query, state, city)
        if not self.initialized:
            return None

        started = time.perf_counter()
        normalized = normalize_query(query)
        ctx = LookupContext(
            query=query,
            state=state,
            city=city,
            normalized_query=normalized,
            fingerprint=generate_cache_key(query, state, city),
        )

        hit = await self._run_chain(ctx)
        elapsed_ms = (time.perf_counter() - started) * 1000
        await self._record_outcome(hit is not None, elapsed_ms)

        if hit is None:
            self.counters.misses += 1
            logger.debug(LogEvents.CACHE_MISS, fingerprint=ctx.fingerprint[:8])
            return None

        if hit.source == "memory":
            self.counters.memory_hits += 1
        elif hit.source == "persistent":
            self.counters.persistent_hits += 1
        else:
            self.counters.synonym_hits += 1

        logger.info(
            LogEvents.SYNONYM_HIT if hit.source == "synonym" else LogEvents.CACHE_HIT,
            source=hit.source,
            fingerprint=ctx.fingerprint[:8],
            resolved_query=hit.resolved_query,
            response_time_ms=round(elapsed_ms, 2),
        )
        return hit.entry.result

    async def _run_chain(self, ctx: LookupContext) -> LookupHit | None:
        try:
            for strategy in self.strategies:
                hit = await strategy.find(ctx)
                if hit is not None:
                    if hit.source != "memory":
                        # Promote under the caller's key so the next
                        # lookup is a memory hit
                        promoted = hit.entry
                        if promoted.fingerprint != ctx.fingerprint:
                            promoted = promoted.model_copy(
                                update={"fingerprint": ctx.fingerprint}
                            )
                        self.memory.put(ctx.fingerprint, promoted)
                    return hit
        except CorruptEntryError as e:
            await self._discard_corrupt(e)
        except CacheIOError as e:
            self.counters.errors += 1
            logger.warning(LogEvents.CACHE_ERROR, operation="lookup", error=e.message)
        except Exception as e:
            self.counters.errors += 1
            logger.error(
                LogEvents.CACHE_ERROR, operation="lookup", error=str(e), exc_info=True
            )
        return None

    async def _discard_corrupt(self, error: CorruptEntryError) -> None:
        self.memory.delete(error.fingerprint)
        try:
            await self.guard.call("delete", self.persistent.delete, error.fingerprint)
        except CacheIOError as e:
            logger.warning(
                LogEvents.CACHE_ERROR, operation="delete_corrupt", error=e.message
            )
            return
        logger.warning(
            LogEvents.CORRUPT_ENTRY_REMOVED,
            fingerprint=error.fingerprint[:8],
            error=error.message,
        )

    async def _record_outcome(self, was_hit: bool, response_time_ms: float) -> None:
        try:
            await self.guard.call(
                "record_outcome", self.aggregator.record_outcome, was_hit, response_time_ms
            )
        except CacheIOError as e:
            logger.warning(
                LogEvents.CACHE_ERROR, operation="record_outcome", error=e.message
            )

    async def store(
        self, query: str, state: str, city: str, result: dict[str, Any]
    ) -> bool:
        """Write a fresh result through to both tiers.

        Persistent tier first, then memory, then popular-query statistics.
        A persistent-tier failure makes the whole store a no-op.

        Returns:
            True if the entry was written, False if the store was a no-op

        Raises:
            ValidationError: If query, state or city is blank or result is
                not a mapping
        """
        self._validate(query, state, city)
        if not isinstance(result, dict):
            raise ValidationError(
                "result must be a JSON object",
                details={"type": type(result).__name__},
            )
        if not self.initialized:
            return False

        now = utcnow()
        normalized = normalize_query(query)
        fingerprint = generate_cache_key(query, state, city)
        entry = CacheEntry(
            fingerprint=fingerprint,
            original_query=query,
            normalized_query=normalized,
            state=state,
            city=city,
            result=result,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(seconds=self.config.ttl),
            hit_count=1,
            last_accessed_at=now,
        )

        try:
            await self.guard.call("upsert", self.persistent.upsert, entry)
        except CacheIOError as e:
            self.counters.errors += 1
            logger.warning(LogEvents.CACHE_ERROR, operation="store", error=e.message)
            return False

        self.memory.put(fingerprint, entry)

        try:
            await self.guard.call(
                "record_popular",
                self.popular.record,
                normalized,
                state,
                self.popular.result_count(result),
            )
        except CacheIOError as e:
            logger.warning(
                LogEvents.CACHE_ERROR, operation="record_popular", error=e.message
            )

        logger.info(
            LogEvents.CACHE_STORED,
            fingerprint=fingerprint[:8],
            normalized_query=normalized,
            state=state,
            city=city,
        )
        return True

    async def stats(self, days: int = 7) -> CacheStatsReport:
        """Aggregated lookup statistics for the trailing window.

        Raises:
            CacheIOError: If the persistent tier is unavailable
        """
        return await self.guard.call(
            "stats", self.aggregator.summarize, days, len(self.memory)
        )

    async def popular_queries(self, limit: int = 20) -> list[PopularQueryRecord]:
        """Most stored queries, ties broken by most recent search.

        Raises:
            CacheIOError: If the persistent tier is unavailable
        """
        return await self.guard.call("popular_queries", self.popular.top_queries, limit)

    async def clear_expired(self) -> int:
        """Remove expired rows from both tiers.

        Returns:
            Number of persistent rows removed

        Raises:
            CacheIOError: If the persistent tier is unavailable
        """
        purged = self.memory.purge_expired()
        deleted = await self.guard.call("clear_expired", self.persistent.delete_expired)
        logger.info(
            LogEvents.CLEANUP_COMPLETED, persistent_removed=deleted, memory_removed=purged
        )
        return deleted

    async def clear_all(self) -> bool:
        """Remove every cached result from both tiers.

        Statistics, popular queries and synonyms are kept.

        Raises:
            CacheIOError: If the persistent tier is unavailable
        """
        memory_cleared = self.memory.clear()
        cleared = await self.guard.call("clear_all", self.persistent.delete_all)
        logger.warning(LogEvents.CACHE_CLEARED, memory_removed=memory_cleared)
        return cleared

    async def health(self) -> CacheHealth:
        """Health snapshot distinguishing a cold cache from a broken one.

        Status:
            degraded: not initialized, circuit not closed, or a persistent-tier
                operation failed within the circuit breaker timeout
            healthy: lookups recorded in the last day
            no_activity: working but idle
        """
        total = 0
        hit_rate = "0.00"
        report_failed = False
        recent_failure = self.guard.failed_within(self.config.circuit_breaker_timeout)

        if self.initialized:
            try:
                report = await self.guard.call(
                    "health", self.aggregator.summarize, 1, len(self.memory)
                )
                total = report.summary.total_requests
                hit_rate = format_rate(report.summary.cache_hits, total)
            except CacheIOError as e:
                report_failed = True
                logger.warning(LogEvents.CACHE_ERROR, operation="health", error=e.message)

        degraded = (
            not self.initialized
            or report_failed
            or self.circuit_breaker.state != "closed"
            or recent_failure
        )
        if degraded:
            status = "degraded"
        elif total > 0:
            status = "healthy"
        else:
            status = "no_activity"

        return CacheHealth(
            status=status,
            initialized=self.initialized,
            memory_tier_size=len(self.memory),
            last_24h_requests=total,
            hit_rate_24h=hit_rate,
            circuit_state=self.circuit_breaker.state,
            persistent_errors=self.guard.error_count,
        )

    def get_stats(self) -> CacheStats:
        """Process-local counters since startup."""
        self.counters.circuit_state = self.circuit_breaker.state
        return self.counters

    def get_config(self) -> CacheConfig:
        return self.config

    @staticmethod
    def _validate(query: str, state: str, city: str) -> None:
        missing = [
            name
            for name, value in (("query", query), ("state", state), ("city", city))
            if not isinstance(value, str) or not value.strip()
        ]
        if missing:
            raise ValidationError(
                f"Missing required field(s): {', '.join(missing)}",
                details={"missing": missing},
            )
