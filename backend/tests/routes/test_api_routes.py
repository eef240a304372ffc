# backend/tests/routes/test_api_routes.py
"""HTTP surface: search, ingestion jobs, provider health and monitoring."""
from fastapi.testclient import TestClient
import pytest

from placescout.core.config import Settings
from placescout.core.exceptions import ConfigurationError
from placescout.main import create_app
from placescout.middleware.prometheus_middleware import endpoint_label
from placescout.services.container import build_services
from placescout.services.providers.mock_provider import MockPlaceProvider
from placescout.services.vector_store.memory_store import InMemoryVectorStore
from tests._utils.places import CENTER_LAT, CENTER_LON, TEST_DIM, RecordingSleep, make_records

SEARCH_BODY = {"latitude": CENTER_LAT, "longitude": CENTER_LON, "radiusMeters": 5000}


def _settings(**overrides) -> Settings:
    values = dict(
        vector_store="memory",
        embedding_provider="mock",
        embedding_dim=TEST_DIM,
        health_monitor_enabled=False,
    )
    values.update(overrides)
    return Settings(**values)


def _services(**kwargs):
    provider = MockPlaceProvider(name="mock", records=make_records("mock", 20))
    return build_services(_settings(), providers={"mock": provider}, sleep=RecordingSleep(), **kwargs)


@pytest.fixture
def services():
    return _services()


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


class TestSearchRoutes:
    def test_search_falls_back_to_ingestion_then_hits_cache(self, client):
        first = client.post("/api/search", json=SEARCH_BODY)
        second = client.post("/api/search", json=SEARCH_BODY)

        assert first.status_code == 200
        body = first.json()
        assert body["fallbackUsed"] is True
        assert body["fromCache"] is False
        assert body["total"] == 20
        assert body["sources"] == ["mock"]
        assert body["pagination"] == {"offset": 0, "limit": 20, "hasMore": False}
        assert body["places"][0]["source"] == "mock"
        assert second.json()["fromCache"] is True

    def test_pagination_reports_more_results(self, client):
        response = client.post("/api/search", json={**SEARCH_BODY, "limit": 5})

        body = response.json()
        assert len(body["places"]) == 5
        assert body["pagination"]["hasMore"] is True

    def test_invalid_latitude_is_a_400(self, client):
        response = client.post("/api/search", json={"latitude": 95, "longitude": 2.35})

        assert response.status_code == 400
        assert "latitude" in response.json()["error"]

    def test_missing_coordinates_is_a_400(self, client):
        response = client.post("/api/search", json={"query": "museum"})
        assert response.status_code == 400

    def test_analytics(self, client):
        client.post("/api/search", json=SEARCH_BODY)

        analytics = client.get("/api/search/analytics").json()

        assert analytics["total_searches"] == 1
        assert "cache" in analytics


class TestIngestRoutes:
    def test_ingest_and_inspect_job(self, client):
        response = client.post(
            "/api/ingest", json={"latitude": CENTER_LAT, "longitude": CENTER_LON}
        )

        assert response.status_code == 200
        result = response.json()
        assert result["stored"] == 20
        job = client.get(f"/api/ingest/jobs/{result['job_id']}").json()
        assert job["status"] == "completed"
        assert [j["id"] for j in client.get("/api/ingest/jobs").json()] == [result["job_id"]]

    def test_unknown_job_is_a_404(self, client):
        response = client.get("/api/ingest/jobs/01J9Z3F6Q4W8M2K7V5X1T0R3YB")

        assert response.status_code == 404
        assert response.json() == {"error": "Ingestion job 01J9Z3F6Q4W8M2K7V5X1T0R3YB not found"}

    def test_stats(self, client):
        client.post("/api/ingest", json={"latitude": CENTER_LAT, "longitude": CENTER_LON})

        stats = client.get("/api/ingest/stats").json()

        assert stats["jobs"]["completed"] == 1
        assert stats["vector_store"]["count"] == 20
        assert stats["health"]["healthy"] is True


class TestProviderRoutes:
    def test_provider_health(self, client):
        body = client.get("/api/providers/health").json()

        assert body["summary"]["overall"] == "healthy"
        assert [p["name"] for p in body["providers"]] == ["mock"]
        assert body["lastReorder"] is None

    def test_manual_health_check_probes_providers(self, client, services):
        response = client.post("/api/providers/health/check")

        assert response.status_code == 200
        assert services.providers["mock"].probes == 1

    def test_toggle_provider(self, client):
        response = client.post("/api/providers/mock/enabled", json={"enabled": False})

        assert response.status_code == 200
        assert response.json()["order"] == []

    def test_unknown_provider_is_a_404(self, client):
        response = client.post("/api/providers/nope/enabled", json={"enabled": False})
        assert response.status_code == 404


class TestMonitoringRoutes:
    def test_health(self, client):
        body = client.get("/api/health").json()

        assert body["status"] == "healthy"
        assert body["checks"]["vector_store"]["vector_size"] == TEST_DIM

    def test_metrics(self, client):
        client.post("/api/search", json=SEARCH_BODY)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "placescout_http_requests_total" in response.text

    def test_request_id_is_echoed_or_generated(self, client):
        echoed = client.get("/api/health", headers={"X-Request-ID": "req-123"})
        generated = client.get("/api/health")

        assert echoed.headers["X-Request-ID"] == "req-123"
        assert len(generated.headers["X-Request-ID"]) == 26

    def test_endpoint_label_collapses_ids(self):
        assert endpoint_label("/api/ingest/jobs/01J9Z3F6Q4W8M2K7V5X1T0R3YB") == "/api/ingest/jobs/:id"
        assert endpoint_label("/api/items/42") == "/api/items/:id"
        assert endpoint_label("/api/search") == "/api/search"


class TestStartup:
    def test_dimension_mismatch_fails_startup(self):
        services = _services(store=InMemoryVectorStore(vector_size=TEST_DIM * 2))

        with pytest.raises(ConfigurationError):
            with TestClient(create_app(services)):
                pass
