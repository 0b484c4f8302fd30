"""Tests for FastAPI application and exception handlers.

REST API with versioned routing and a consistent error envelope.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.errors import (
    ConflictError,
    EntitlementDeniedError,
    InsufficientCreditsError,
    NotFoundError,
)
from app.main import create_app
from app.providers.errors import ProviderConfigurationError, TransportError


@pytest.fixture
def app():
    """Create test application instance."""
    return create_app()


@pytest.fixture
async def client(app):
    """Create async HTTP client for testing."""
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    async def test_health_returns_healthy_status(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestSecurityHeaders:
    """Security headers are added to every response."""

    async def test_headers_present(self, client):
        response = await client.get("/health")

        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "default-src 'none'" in response.headers["Content-Security-Policy"]

    async def test_api_responses_not_cached(self, client):
        response = await client.get("/api/v1/nonexistent")

        assert response.status_code == 404
        assert response.headers["Cache-Control"] == "no-store, max-age=0"


class TestExceptionHandlers:
    """Custom exceptions are rendered with the standard error envelope."""

    async def test_not_found(self, app, client):
        @app.get("/test/not-found")
        async def raise_not_found():
            raise NotFoundError("Feature", "123")

        response = await client.get("/test/not-found")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    async def test_conflict_keeps_custom_code(self, app, client):
        @app.get("/test/conflict")
        async def raise_conflict():
            raise ConflictError(code="DUPLICATE_PROVIDER", message="exists")

        response = await client.get("/test/conflict")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "DUPLICATE_PROVIDER"

    async def test_quota_denial(self, app, client):
        @app.get("/test/quota")
        async def raise_quota():
            raise EntitlementDeniedError("QUOTA_EXCEEDED", "Monthly usage limit reached")

        response = await client.get("/test/quota")

        assert response.status_code == 429
        assert response.json()["error"] == {
            "code": "QUOTA_EXCEEDED",
            "message": "Monthly usage limit reached",
            "details": None,
        }

    async def test_insufficient_credits_details(self, app, client):
        @app.get("/test/credits")
        async def raise_credits():
            raise InsufficientCreditsError("tenant-a", required=5, available=1)

        response = await client.get("/test/credits")

        assert response.status_code == 402
        assert response.json()["error"]["details"] == [
            {"credits_required": 5, "credits_available": 1}
        ]

    @pytest.mark.parametrize(
        ("error", "status_code", "code"),
        [
            (
                ProviderConfigurationError("OpenAI API key not configured"),
                503,
                "PROVIDER_CONFIGURATION_ERROR",
            ),
            (TransportError("Provider call timed out after 60s"), 502, "TRANSPORT_ERROR"),
        ],
    )
    async def test_provider_errors(self, app, client, error, status_code, code):
        @app.get("/test/provider")
        async def raise_provider_error():
            raise error

        response = await client.get("/test/provider")

        assert response.status_code == status_code
        assert response.json()["error"]["code"] == code
        assert response.json()["error"]["message"] == error.message

    async def test_request_validation_is_400(self, app, client):
        @app.get("/test/typed/{item_id}")
        async def typed(item_id: int):
            return {"item_id": item_id}

        response = await client.get("/test/typed/abc")

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"][0]["loc"] == ["path", "item_id"]

    async def test_unhandled_exception_is_500(self, app, client):
        """Internal details never reach the client."""

        @app.get("/test/crash")
        async def crash():
            raise RuntimeError("database password is hunter2")

        response = await client.get("/test/crash")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "INTERNAL_ERROR"
        assert "hunter2" not in response.text
