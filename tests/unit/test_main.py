"""
Unit tests for FastAPI application.
"""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock, patch


@pytest.fixture
def client():
    """Create a test client for the FastAPI application."""
    from app.main import app
    return TestClient(app)


def test_health_check(client):
    """Test health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["pending_approvals"] == 0
    assert data["slack_enabled"] is False


def test_root_endpoint(client):
    """Test root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "n8n Debug Agent API"
    assert "version" in data
    assert data["docs"] == "/docs"


def test_request_id_is_echoed(client):
    """Test the request id header is reused or generated."""
    response = client.get("/", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"

    generated = client.get("/").headers["X-Request-ID"]
    assert generated and generated != "req-123"


def test_lifespan_starts_and_stops_services():
    """Test startup builds the services and shutdown releases them."""
    from app.main import app

    services = MagicMock()
    services.store.get_pending.return_value = []
    services.notifier.enabled = True
    services.shutdown = AsyncMock()

    with patch("app.main.build_services", return_value=services):
        with TestClient(app) as client:
            services.start.assert_called_once()
            assert client.get("/health").json()["slack_enabled"] is True

    services.shutdown.assert_awaited_once()
    assert app.state.services is None
