"""Tests for the FastAPI application factory.

Health check, security headers, and exception handler envelopes.
"""

import json

from fastapi import Request
from fastapi.exceptions import RequestValidationError

from passwordless.core.config import settings
from passwordless.core.errors import MagicLinkRejectedError, RateLimitedError
from passwordless.main import (
    api_error_handler,
    create_app,
    validation_error_handler,
)


def _request() -> Request:
    return Request({"type": "http", "method": "GET", "path": "/", "headers": []})


class TestHealth:
    """Tests for GET /health."""

    async def test_health_check(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestSecurityHeaders:
    """Tests for SecurityHeadersMiddleware."""

    async def test_adds_security_headers(self, client):
        response = await client.get("/health")

        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
        assert "default-src 'none'" in response.headers["Content-Security-Policy"]

    async def test_api_responses_are_not_cached(self, client):
        response = await client.post("/api/v1/auth/logout")
        assert response.headers["Cache-Control"] == "no-store, max-age=0"


class TestCors:
    """CORS is the outermost middleware."""

    async def test_preflight_answered_before_app_middleware(self, client):
        origin = settings.allowed_origins[0]

        response = await client.options(
            "/api/v1/auth/magic-link",
            headers={
                "Origin": origin,
                "Access-Control-Request-Method": "POST",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == origin
        assert response.headers["access-control-allow-credentials"] == "true"
        # Short-circuited by CORS, so the inner middleware never ran
        assert "X-Frame-Options" not in response.headers


class TestErrorHandlers:
    """Tests for exception handlers."""

    def test_api_error_envelope(self):
        exc = MagicLinkRejectedError("INVALID_MAGIC_LINK", "Invalid sign-in link.")

        response = api_error_handler(_request(), exc)

        assert response.status_code == 400
        assert json.loads(response.body) == {
            "error": {
                "code": "INVALID_MAGIC_LINK",
                "message": "Invalid sign-in link.",
                "details": None,
            }
        }

    def test_rate_limited_error_sets_retry_after(self):
        response = api_error_handler(_request(), RateLimitedError(15))

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "900"

    def test_validation_error_envelope(self):
        exc = RequestValidationError(
            [{"loc": ("body", "email"), "msg": "value is not a valid email", "type": "value_error"}]
        )

        response = validation_error_handler(_request(), exc)

        body = json.loads(response.body)
        assert response.status_code == 400
        assert body["error"]["code"] == "VALIDATION_ERROR"
        assert body["error"]["details"][0]["loc"] == ["body", "email"]


class TestCreateApp:
    """Tests for create_app()."""

    def test_mounts_v1_routes(self):
        paths = create_app().openapi()["paths"]

        assert "/api/v1/auth/magic-link" in paths
        assert "/api/v1/auth/login-with-magic-link" in paths
        assert "/api/v1/auth/logout" in paths
        assert "/api/v1/auth/me" in paths
        assert "/health" in paths

    def test_limiter_on_app_state(self):
        from passwordless.core.rate_limiting import limiter

        assert create_app().state.limiter is limiter
