"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' against the test store
  - No authentication required, never throttled
"""

from __future__ import annotations

from fastapi.testclient import TestClient


def test_health_returns_200_with_components(api_client: TestClient) -> None:
    resp = api_client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"] == {"app": "ok", "database": "ok"}


def test_health_no_auth_required(api_client: TestClient) -> None:
    """Health endpoint is accessible without any authentication headers."""
    resp = api_client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_health_is_not_rate_limited(api_client: TestClient) -> None:
    for _ in range(20):
        assert api_client.get("/api/v1/health").status_code == 200


def test_unknown_route_uses_error_envelope(api_client: TestClient) -> None:
    resp = api_client.get("/api/v1/nope")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "http_404"
