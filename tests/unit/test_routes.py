"""Unit tests for API routes."""

from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from portalfinder.api.routes import create_routes
from portalfinder.api.validation import CLEAR_ALL_CONFIRMATION
from portalfinder.cache.models import CacheConfig
from portalfinder.cache.service import CacheService
from portalfinder.cache.stores import InMemoryCacheStore
from portalfinder.core.exceptions import CacheIOError

LOOKUP = {"query": "Passport Renewal", "state": "Kerala", "city": "Kochi"}


@pytest.fixture
def service():
    """Initialized service without background sweeps."""
    service = CacheService(InMemoryCacheStore(), CacheConfig())
    service.initialized = True
    return service


@pytest.fixture
def client(service):
    """Create test client around a minimal app."""
    # Create a minimal FastAPI app without the lifespan
    app = FastAPI(title="PortalFinder Test", version="test")
    app.include_router(create_routes(service))

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


class TestSearchEndpoints:
    """Tests for /api/search/lookup and /api/search/store."""

    def test_lookup_miss(self, client):
        response = client.post("/api/search/lookup", json=LOOKUP)

        assert response.status_code == 200
        assert response.json() == {"cached": False, "result": None}

    def test_store_then_lookup(self, client):
        result = {"services": [{"title": "Passport Seva"}]}

        response = client.post("/api/search/store", json={**LOOKUP, "result": result})
        assert response.status_code == 200
        assert response.json() == {"stored": True}

        response = client.post("/api/search/lookup", json=LOOKUP)
        assert response.json() == {"cached": True, "result": result}

    def test_blank_field_is_400(self, client):
        response = client.post("/api/search/lookup", json={**LOOKUP, "state": " "})

        assert response.status_code == 400
        assert "state" in response.json()["detail"]

    def test_missing_field_is_422(self, client):
        response = client.post("/api/search/lookup", json={"query": "pan card"})
        assert response.status_code == 422

    def test_store_non_object_result_is_422(self, client):
        response = client.post("/api/search/store", json={**LOOKUP, "result": [1, 2]})
        assert response.status_code == 422

    def test_store_while_degraded(self, client, service):
        service.initialized = False

        response = client.post(
            "/api/search/store", json={**LOOKUP, "result": {"services": []}}
        )

        assert response.status_code == 200
        assert response.json() == {"stored": False}

    def test_store_fails_open(self, client, service):
        service.persistent.upsert = AsyncMock(side_effect=OSError("connection reset"))

        response = client.post(
            "/api/search/store", json={**LOOKUP, "result": {"services": []}}
        )

        assert response.status_code == 200
        assert response.json() == {"stored": False}

    def test_lookup_fails_open(self, client, service):
        service.persistent.get = AsyncMock(side_effect=OSError("connection reset"))

        response = client.post("/api/search/lookup", json=LOOKUP)

        assert response.status_code == 200
        assert response.json()["cached"] is False


class TestReportingEndpoints:
    """Tests for stats, popular queries, health and config."""

    def test_stats(self, client):
        client.post("/api/search/lookup", json=LOOKUP)

        response = client.get("/api/cache/stats", params={"days": 1})

        assert response.status_code == 200
        data = response.json()
        assert data["period_days"] == 1
        assert data["summary"]["total_requests"] == 1
        assert data["summary"]["hit_rate"] == "0.00"
        assert len(data["daily"]) == 1

    def test_stats_days_validated(self, client):
        assert client.get("/api/cache/stats", params={"days": -1}).status_code == 422

    def test_stats_unavailable(self, client, service):
        service.stats = AsyncMock(side_effect=CacheIOError("pool exhausted"))

        response = client.get("/api/cache/stats")

        assert response.status_code == 503
        assert "pool exhausted" in response.json()["detail"]

    def test_popular_queries(self, client):
        client.post(
            "/api/search/store", json={**LOOKUP, "result": {"services": [1, 2]}}
        )

        response = client.get("/api/cache/popular-queries", params={"limit": 5})

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["queries"][0]["normalized_query"] == "passport renewal"
        assert data["queries"][0]["avg_results"] == 2.0

    def test_popular_queries_unavailable(self, client, service):
        service.popular_queries = AsyncMock(side_effect=CacheIOError("down"))
        assert client.get("/api/cache/popular-queries").status_code == 503

    def test_health(self, client):
        response = client.get("/api/cache/health")

        assert response.status_code == 200
        assert response.json()["status"] == "no_activity"

    def test_health_degraded_is_still_200(self, client, service):
        service.initialized = False

        response = client.get("/api/cache/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_config(self, client):
        response = client.get("/api/cache/config")

        assert response.status_code == 200
        data = response.json()
        assert data["configuration"]["ttl"] == 86400
        assert data["configuration"]["memory_size"] == 100
        assert data["synonym_matching_enabled"] is True

    def test_liveness(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestMaintenanceEndpoints:
    """Tests for clear-expired, clear-all and warm."""

    def test_clear_expired(self, client):
        response = client.post("/api/cache/clear-expired")

        assert response.status_code == 200
        assert response.json()["cleared_entries"] == 0

    def test_clear_expired_unavailable(self, client, service):
        service.persistent.delete_expired = AsyncMock(side_effect=OSError("down"))
        assert client.post("/api/cache/clear-expired").status_code == 503

    def test_clear_all_requires_confirmation(self, client):
        assert client.post("/api/cache/clear-all").status_code == 400
        assert (
            client.post("/api/cache/clear-all", json={"confirm": "yes"}).status_code
            == 400
        )

    def test_clear_all(self, client):
        client.post("/api/search/store", json={**LOOKUP, "result": {"services": []}})

        response = client.post(
            "/api/cache/clear-all", json={"confirm": CLEAR_ALL_CONFIRMATION}
        )

        assert response.status_code == 200
        assert response.json()["cleared"] is True
        assert client.post("/api/search/lookup", json=LOOKUP).json()["cached"] is False

    def test_warm(self, client):
        response = client.post(
            "/api/cache/warm",
            json={"queries": ["pan card", "voter id"], "states": ["Goa"]},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["warmed_entries"] == 2
        assert data["skipped_entries"] == 0
        assert data["errors"] is None

        lookup = client.post(
            "/api/search/lookup",
            json={"query": "pan card", "state": "Goa", "city": "Capital"},
        )
        assert lookup.json()["result"]["placeholder"] is True

    def test_warm_requires_queries(self, client):
        response = client.post("/api/cache/warm", json={"queries": [], "states": ["Goa"]})
        assert response.status_code == 422
