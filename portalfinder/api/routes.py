"""FastAPI route handlers for the PortalFinder cache API."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Query, status

from portalfinder.api.validation import (
    CLEAR_ALL_CONFIRMATION,
    CacheHealthResponse,
    ClearAllRequest,
    ClearAllResponse,
    ClearExpiredResponse,
    ConfigResponse,
    ErrorResponse,
    HealthResponse,
    LookupRequest,
    LookupResponse,
    PopularQueriesResponse,
    StatsResponse,
    StoreRequest,
    StoreResponse,
    WarmRequest,
    WarmResponse,
)
from portalfinder.cache.service import CacheService
from portalfinder.cache.warming import warm_cache
from portalfinder.core.exceptions import CacheIOError, ValidationError

logger = logging.getLogger(__name__)


def _unavailable(operation: str, error: CacheIOError) -> HTTPException:
    logger.error(f"Cache {operation} failed: {error}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Persistent cache unavailable: {error.message}",
    )


def create_routes(service: CacheService) -> APIRouter:
    """Create and configure API routes.

    Args:
        service: Started cache service

    Returns:
        Configured APIRouter
    """
    api_router = APIRouter()

    # Serving path

    @api_router.post(
        "/api/search/lookup",
        response_model=LookupResponse,
        responses={400: {"model": ErrorResponse}},
    )
    async def lookup(request: LookupRequest) -> LookupResponse:
        """Look up a cached result (fails open to a miss)."""
        try:
            result = await service.lookup(request.query, request.state, request.city)
        except ValidationError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail=e.message
            ) from e
        return LookupResponse(cached=result is not None, result=result)

    @api_router.post(
        "/api/search/store",
        response_model=StoreResponse,
        responses={400: {"model": ErrorResponse}},
    )
    async def store(request: StoreRequest) -> StoreResponse:
        """Write a fresh result through to both cache tiers."""
        try:
            stored = await service.store(
                request.query, request.state, request.city, request.result
            )
        except ValidationError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail=e.message
            ) from e
        return StoreResponse(stored=stored)

    # Reporting

    @api_router.get(
        "/api/cache/stats",
        response_model=StatsResponse,
        responses={503: {"model": ErrorResponse}},
    )
    async def cache_stats(days: int = Query(7, ge=0, le=365)) -> StatsResponse:
        """Aggregated lookup statistics for the trailing window."""
        try:
            report = await service.stats(days)
        except CacheIOError as e:
            raise _unavailable("stats", e) from e
        return StatsResponse(period_days=days, summary=report.summary, daily=report.daily)

    @api_router.get(
        "/api/cache/popular-queries",
        response_model=PopularQueriesResponse,
        responses={503: {"model": ErrorResponse}},
    )
    async def popular_queries(
        limit: int = Query(20, ge=1, le=500),
    ) -> PopularQueriesResponse:
        """Most stored queries, most searched first."""
        try:
            queries = await service.popular_queries(limit)
        except CacheIOError as e:
            raise _unavailable("popular_queries", e) from e
        return PopularQueriesResponse(count=len(queries), queries=queries)

    @api_router.get("/api/cache/health", response_model=CacheHealthResponse)
    async def cache_health() -> CacheHealthResponse:
        """Cache health; always 200, degradation is reported in the body."""
        health = await service.health()
        return CacheHealthResponse(**health.model_dump())

    @api_router.get("/api/cache/config", response_model=ConfigResponse)
    async def cache_config() -> ConfigResponse:
        return ConfigResponse(configuration=service.get_config())

    # Maintenance

    @api_router.post(
        "/api/cache/clear-expired",
        response_model=ClearExpiredResponse,
        responses={503: {"model": ErrorResponse}},
    )
    async def clear_expired() -> ClearExpiredResponse:
        try:
            cleared = await service.clear_expired()
        except CacheIOError as e:
            raise _unavailable("clear_expired", e) from e
        return ClearExpiredResponse(
            cleared_entries=cleared,
            message=f"Cleared {cleared} expired cache entries",
        )

    @api_router.post(
        "/api/cache/clear-all",
        response_model=ClearAllResponse,
        responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    )
    async def clear_all(request: ClearAllRequest | None = None) -> ClearAllResponse:
        """Remove every cached result. Requires explicit confirmation."""
        if request is None or request.confirm != CLEAR_ALL_CONFIRMATION:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f'Confirmation required: send {{"confirm": "{CLEAR_ALL_CONFIRMATION}"}}',
            )
        try:
            cleared = await service.clear_all()
        except CacheIOError as e:
            raise _unavailable("clear_all", e) from e
        return ClearAllResponse(cleared=cleared, message="All cache entries cleared")

    @api_router.post("/api/cache/warm", response_model=WarmResponse)
    async def warm(request: WarmRequest) -> WarmResponse:
        """Store placeholder results for (query, state) pairs not yet cached."""
        report = await warm_cache(
            service, request.queries, request.states, city=request.city
        )
        return WarmResponse(
            warmed_entries=report.warmed_entries,
            skipped_entries=report.skipped_entries,
            errors=report.errors or None,
            message=f"Cache warming completed. {report.warmed_entries} entries added.",
        )

    # Probes

    @api_router.get("/health/live", response_model=HealthResponse)
    async def health_live() -> HealthResponse:
        """Liveness probe: the process is serving requests."""
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    return api_router
