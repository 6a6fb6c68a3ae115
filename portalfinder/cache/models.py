"""Cache configuration, entity and report models."""

from datetime import date, datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    """Timezone-aware current time used for all cache timestamps."""
    return datetime.now(timezone.utc)


class CacheConfig(BaseModel):
    """Configuration for the two-tier query-result cache.

    Attributes:
        enabled: Whether caching is enabled
        ttl: Time-to-live for cache entries in seconds (default 24 hours)
        memory_size: Maximum number of entries held in the memory tier
        memory_eviction: Memory tier eviction policy (lru or fifo)
        persistent_cleanup_interval: Seconds between persistent expiry sweeps
        memory_cleanup_interval: Seconds between memory tier expiry sweeps
        operation_timeout: Timeout for a single persistent-tier operation
        circuit_breaker_threshold: Consecutive failures before opening circuit
        circuit_breaker_timeout: Seconds before attempting recovery
        result_count_key: Payload key whose list length feeds popular queries
    """

    enabled: bool = Field(default=True, description="Enable/disable caching")
    ttl: float = Field(
        default=86400, description="Cache TTL in seconds (24 hours)", gt=0
    )
    memory_size: int = Field(
        default=100, description="Memory tier capacity (entries)", ge=1
    )
    memory_eviction: Literal["lru", "fifo"] = Field(
        default="lru", description="Memory tier eviction policy"
    )
    persistent_cleanup_interval: float = Field(
        default=3600, description="Persistent expiry sweep interval (seconds)", gt=0
    )
    memory_cleanup_interval: float = Field(
        default=600, description="Memory expiry sweep interval (seconds)", gt=0
    )
    operation_timeout: float = Field(
        default=5.0, description="Persistent operation timeout (seconds)", gt=0
    )
    circuit_breaker_threshold: int = Field(
        default=5, description="Failures before opening circuit", ge=1
    )
    circuit_breaker_timeout: int = Field(
        default=300, description="Circuit breaker timeout (seconds)", ge=0
    )
    result_count_key: str = Field(
        default="services", description="Payload list used as the result count"
    )


class CacheEntry(BaseModel):
    """A cached result for one (normalized query, state, city) fingerprint."""

    fingerprint: str
    original_query: str
    normalized_query: str
    state: str
    city: str
    result: dict[str, Any]
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    hit_count: int = Field(default=1, ge=1)
    last_accessed_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def validate_expiry(self) -> "CacheEntry":
        """Expiry must come strictly after creation."""
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")
        return self

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())

    def touched(self, now: datetime | None = None) -> "CacheEntry":
        """Copy with hit_count incremented and last access refreshed."""
        return self.model_copy(
            update={
                "hit_count": self.hit_count + 1,
                "last_accessed_at": now or utcnow(),
            }
        )


class DailyStat(BaseModel):
    """Per-day lookup counters."""

    date: date
    total_requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    api_calls_saved: int = 0
    avg_response_time_ms: float = 0.0

    def with_outcome(self, was_hit: bool, response_time_ms: float) -> "DailyStat":
        """Return a copy with one more completed lookup folded in.

        The average uses the incremental mean over total_requests.
        """
        new_total = self.total_requests + 1
        new_avg = (
            self.avg_response_time_ms * self.total_requests + response_time_ms
        ) / new_total
        return self.model_copy(
            update={
                "total_requests": new_total,
                "cache_hits": self.cache_hits + (1 if was_hit else 0),
                "cache_misses": self.cache_misses + (0 if was_hit else 1),
                "api_calls_saved": self.api_calls_saved + (1 if was_hit else 0),
                "avg_response_time_ms": new_avg,
            }
        )


class PopularQueryRecord(BaseModel):
    """Usage statistics for one normalized query."""

    normalized_query: str
    search_count: int = Field(default=1, ge=1)
    avg_results: float = 0.0
    states_searched: list[str] = Field(default_factory=list)
    last_searched_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def first_search(
        cls,
        normalized_query: str,
        state: str,
        result_count: int,
        now: datetime | None = None,
    ) -> "PopularQueryRecord":
        return cls(
            normalized_query=normalized_query,
            search_count=1,
            avg_results=float(result_count),
            states_searched=[state],
            last_searched_at=now or utcnow(),
        )

    def with_search(
        self, state: str, result_count: int, now: datetime | None = None
    ) -> "PopularQueryRecord":
        """Fold another search into the record.

        avg_results is a two-point smoothing, (old + new) / 2, not a running mean.
        """
        states = list(self.states_searched)
        if state not in states:
            states.append(state)
        return self.model_copy(
            update={
                "search_count": self.search_count + 1,
                "avg_results": (self.avg_results + result_count) / 2,
                "states_searched": states,
                "last_searched_at": now or utcnow(),
            }
        )


class SynonymMapping(BaseModel):
    """Alternate phrasing mapped onto a canonical query."""

    base_query: str
    synonym_query: str
    confidence_score: float = Field(default=1.0, ge=0.0, le=1.0)
    is_active: bool = True


class CacheStatsSummary(BaseModel):
    """Aggregated counters over a trailing window of days.

    hit_rate and avg_response_time_ms are two-decimal strings.
    """

    total_requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    hit_rate: str = "0.00"
    api_calls_saved: int = 0
    avg_response_time_ms: str = "0.00"
    memory_tier_size: int = 0


class CacheStatsReport(BaseModel):
    """Summary plus the per-day rows it was computed from (newest first)."""

    summary: CacheStatsSummary
    daily: list[DailyStat] = Field(default_factory=list)


class CacheHealth(BaseModel):
    """Operator-facing health snapshot."""

    status: Literal["healthy", "no_activity", "degraded"]
    initialized: bool
    memory_tier_size: int = 0
    last_24h_requests: int = 0
    hit_rate_24h: str = "0.00"
    circuit_state: str = "closed"
    persistent_errors: int = 0
    timestamp: datetime = Field(default_factory=utcnow)


class CacheStats(BaseModel):
    """Process-local counters since startup.

    Attributes:
        memory_hits: Hits served by the memory tier
        persistent_hits: Hits served by a direct persistent lookup
        synonym_hits: Hits served through synonym resolution
        misses: Lookups that found nothing
        errors: Persistent-tier operations that failed
        circuit_state: Current circuit breaker state
    """

    memory_hits: int = Field(default=0, description="Memory tier hits")
    persistent_hits: int = Field(default=0, description="Persistent tier hits")
    synonym_hits: int = Field(default=0, description="Synonym-resolved hits")
    misses: int = Field(default=0, description="Cache misses")
    errors: int = Field(default=0, description="Persistent tier errors")
    circuit_state: str = Field(
        default="closed", description="Circuit breaker state (closed/open/half_open)"
    )

    @property
    def hits(self) -> int:
        return self.memory_hits + self.persistent_hits + self.synonym_hits

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0
