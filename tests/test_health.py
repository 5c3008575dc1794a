"""
Tests for health check endpoints.
"""
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from sr_integration.db.session import get_db
from sr_integration.main import app


class TestHealth:
    """Tests for health check endpoints."""

    def test_basic_health(self, client: TestClient):
        """Test basic health check."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_api_health_with_services(self, client: TestClient):
        """Database is required; Redis is only reported."""
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["services"]["database"]["status"] == "ok"
        assert "redis" in data["services"]

    def test_api_health_database_down(self, client: TestClient):
        """Should return 503 so the SR agent backs off and re-sends."""
        class BrokenSession:
            def execute(self, *args, **kwargs):
                raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        app.dependency_overrides[get_db] = lambda: BrokenSession()

        response = client.get("/api/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
        assert response.json()["services"]["database"]["status"] == "error"
