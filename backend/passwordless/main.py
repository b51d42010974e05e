"""ASGI entry point for the passwordless sign-in service.

Builds the FastAPI app: security headers, CORS, error envelopes, the v1
router, and a health probe. Run with `uvicorn passwordless.main:app`.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from passwordless.api.v1.router import router as v1_router
from passwordless.core.config import settings
from passwordless.core.database import dispose_engine
from passwordless.core.errors import APIError
from passwordless.core.rate_limiting import limiter, rate_limit_exceeded_handler
from passwordless.core.responses import ErrorDetail, ErrorResponse

logger = structlog.get_logger()

_CONTENT_SECURITY_POLICY = "default-src 'none'; frame-ancestors 'none'"
_HSTS = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Stamp browser hardening headers onto every response.

    Referrer-Policy is only a default: the magic link redirect sets
    `no-referrer` itself and that value must survive. Everything under
    /api/ is marked uncacheable since it carries session cookies. HSTS is
    sent in production only, where TLS terminates at the proxy.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        headers = response.headers

        headers["X-Frame-Options"] = "DENY"
        headers["X-Content-Type-Options"] = "nosniff"
        headers["Content-Security-Policy"] = _CONTENT_SECURITY_POLICY
        headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")

        if request.url.path.startswith("/api/"):
            headers["Cache-Control"] = "no-store, max-age=0"
        if settings.environment == "production":
            headers["Strict-Transport-Security"] = _HSTS

        return response


def _error_response(
    status_code: int,
    code: str,
    message: str,
    details: list[dict] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=ErrorDetail(code=code, message=message, details=details)
    )
    return JSONResponse(
        status_code=status_code, content=body.model_dump(), headers=headers
    )


def api_error_handler(_request: Request, exc: APIError) -> JSONResponse:
    """Render an APIError as the standard error envelope.

    Throttling errors also get a Retry-After header in seconds.
    """
    headers = None
    retry_after_minutes = getattr(exc, "retry_after_minutes", None)
    if retry_after_minutes is not None:
        headers = {"Retry-After": str(retry_after_minutes * 60)}

    return _error_response(
        exc.status_code, exc.code, exc.message, exc.details, headers
    )


def validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Map FastAPI request validation failures to 400 VALIDATION_ERROR.

    Args:
        _request: Unused.
        exc: Carries one entry per invalid field.

    Returns:
        Envelope whose details list the location, message, and error type
        of each failure.
    """
    details = [
        {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    return _error_response(400, "VALIDATION_ERROR", "Request validation failed", details)


def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log anything unhandled and answer with an opaque 500."""
    logger.exception("Unhandled exception", exc_info=exc, path=str(request.url.path))
    return _error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Configure logging on startup, release pooled connections on shutdown."""
    logging.basicConfig(level=settings.log_level.upper())
    logger.info("Starting application", environment=settings.environment)
    yield
    await dispose_engine()


def create_app() -> FastAPI:
    """Build a fully wired application instance.

    Returns:
        FastAPI app with middleware, handlers, and routes registered.
    """
    app = FastAPI(
        title=f"{settings.app_name} API",
        version="1.0.0",
        description="Passwordless magic link sign-in",
        lifespan=lifespan,
    )

    app.add_middleware(SecurityHeadersMiddleware)
    # Added last so it runs first and answers preflights
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "X-Request-ID"],
    )

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    app.state.limiter = limiter
    app.include_router(v1_router, prefix="/api/v1")

    @app.get("/health")
    def health_check() -> dict:
        """Liveness probe."""
        return {"status": "healthy"}

    return app


app = create_app()
