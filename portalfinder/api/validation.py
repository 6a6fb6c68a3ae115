"""Request and response schemas for the PortalFinder cache API."""

from typing import Any

from pydantic import BaseModel, Field

from portalfinder.cache.models import (
    CacheConfig,
    CacheHealth,
    CacheStatsSummary,
    DailyStat,
    PopularQueryRecord,
)
from portalfinder.cache.warming import DEFAULT_WARM_CITY

CLEAR_ALL_CONFIRMATION = "CLEAR_ALL_CACHE"


class LookupRequest(BaseModel):
    """Request schema for POST /api/search/lookup."""

    query: str = Field(..., description="Free-text search query")
    state: str = Field(..., description="State the search is scoped to")
    city: str = Field(..., description="City the search is scoped to")


class LookupResponse(BaseModel):
    """Response schema for POST /api/search/lookup."""

    cached: bool = Field(..., description="Whether a cached result was found")
    result: dict[str, Any] | None = Field(None, description="Cached result payload")


class StoreRequest(LookupRequest):
    """Request schema for POST /api/search/store."""

    result: dict[str, Any] = Field(..., description="Fresh result payload to cache")


class StoreResponse(BaseModel):
    """Response schema for POST /api/search/store."""

    stored: bool = Field(..., description="Whether the cache accepted the write")


class StatsResponse(BaseModel):
    """Response schema for GET /api/cache/stats."""

    period_days: int = Field(..., description="Trailing window length in days")
    summary: CacheStatsSummary
    daily: list[DailyStat] = Field(default_factory=list, description="Newest first")


class PopularQueriesResponse(BaseModel):
    """Response schema for GET /api/cache/popular-queries."""

    count: int = Field(..., description="Number of queries returned")
    queries: list[PopularQueryRecord]


class ClearExpiredResponse(BaseModel):
    """Response schema for POST /api/cache/clear-expired."""

    cleared_entries: int = Field(..., description="Persistent rows removed")
    message: str


class ClearAllRequest(BaseModel):
    """Request schema for POST /api/cache/clear-all."""

    confirm: str | None = Field(
        None, description=f'Must equal "{CLEAR_ALL_CONFIRMATION}"'
    )


class ClearAllResponse(BaseModel):
    """Response schema for POST /api/cache/clear-all."""

    cleared: bool
    message: str


class WarmRequest(BaseModel):
    """Request schema for POST /api/cache/warm."""

    queries: list[str] = Field(..., description="Queries to warm", min_length=1)
    states: list[str] = Field(..., description="States to warm", min_length=1)
    city: str = Field(DEFAULT_WARM_CITY, description="City used for every pair")


class WarmResponse(BaseModel):
    """Response schema for POST /api/cache/warm."""

    warmed_entries: int
    skipped_entries: int
    errors: list[str] | None = Field(None, description="Per-pair failures")
    message: str


class ConfigResponse(BaseModel):
    """Response schema for GET /api/cache/config."""

    configuration: CacheConfig
    query_normalization_enabled: bool = True
    synonym_matching_enabled: bool = True


class HealthResponse(BaseModel):
    """Response schema for liveness probes."""

    status: str = Field(..., description="Health status (healthy, unhealthy)")
    timestamp: str = Field(..., description="ISO timestamp")


class CacheHealthResponse(CacheHealth):
    """Response schema for GET /api/cache/health."""


class ErrorResponse(BaseModel):
    """Error response schema."""

    error: str = Field(..., description="Error message")
    detail: str | None = Field(None, description="Error details")
    code: str | None = Field(None, description="Error code")
