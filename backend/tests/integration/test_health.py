"""
Integration Tests — Health Endpoints
"""
from fastapi.testclient import TestClient


class TestHealth:
    def test_root_lists_api_prefix(self, client: TestClient):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json()["api"] == "/api/v1"
        assert resp.json()["status"] == "running"

    def test_health(self, client: TestClient):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    def test_ready_checks_database(self, client: TestClient):
        resp = client.get("/ready")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ready"
        assert body["checks"]["database"]["ok"] is True

    def test_request_id_is_echoed(self, client: TestClient):
        resp = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert resp.headers["X-Request-ID"] == "req-42"
        assert "X-Response-Time-Ms" in resp.headers
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
