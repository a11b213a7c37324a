"""Tests for application wiring: health checks, middleware and error bodies."""
from unittest.mock import AsyncMock, Mock, patch

from fastapi import status
from starlette.requests import Request

from app.core.config import settings
from app.infrastructure.mongo import get_db


def make_request(method, path):
    return Request({
        "type": "http",
        "method": method,
        "path": path,
        "headers": [],
        "query_string": b"",
    })


class TestHealthEndpoints:

    def test_root(self, test_client):
        response = test_client.get("/")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "running"

    def test_health(self, test_client):
        response = test_client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "healthy"

    def test_ready_with_mongo(self, test_client):
        from main import app

        db = Mock()
        db.command = AsyncMock(return_value={"ok": 1})
        app.dependency_overrides[get_db] = lambda: db

        with patch("main.get_redis_client", new_callable=AsyncMock, return_value=None):
            response = test_client.get("/ready")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["checks"] == {"mongodb": "ok", "redis": "unavailable"}

    def test_ready_without_mongo(self, test_client):
        from main import app

        db = Mock()
        db.command = AsyncMock(side_effect=ConnectionError("no primary"))
        app.dependency_overrides[get_db] = lambda: db

        with patch("main.get_redis_client", new_callable=AsyncMock, return_value=Mock()):
            response = test_client.get("/ready")

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["status"] == "degraded"


class TestMiddleware:

    def test_request_id_and_security_headers(self, test_client):
        response = test_client.get("/")

        assert response.headers["X-Request-ID"]
        assert response.headers["Cross-Origin-Resource-Policy"] == "cross-origin"
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    def test_cors_exposes_range_headers(self, test_client):
        response = test_client.get("/", headers={"Origin": settings.frontend_url})

        exposed = response.headers["Access-Control-Expose-Headers"]
        assert "Content-Range" in exposed
        assert "Accept-Ranges" in exposed

    def test_upload_routes_get_longer_timeout(self):
        from main import timeout_for

        assert timeout_for(make_request("POST", "/api/courses")) == settings.upload_timeout_seconds
        assert timeout_for(make_request("POST", "/api/courses/abc/videos")) == settings.upload_timeout_seconds
        assert timeout_for(make_request("POST", "/api/courses/abc/documents")) == settings.upload_timeout_seconds
        assert timeout_for(make_request("GET", "/api/courses")) == settings.request_timeout_seconds
        assert timeout_for(make_request("DELETE", "/api/courses/abc/videos/0")) == settings.request_timeout_seconds


class TestErrorBodies:

    def test_unknown_route(self, test_client):
        response = test_client.get("/api/nowhere")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json() == {"message": "Route not found", "code": "HTTP_404"}

    def test_global_rate_limit(self, test_client, mock_redis):
        mock_redis.incr.return_value = 101

        response = test_client.get("/api/courses")

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.json()["code"] == "RATE_LIMITED"
