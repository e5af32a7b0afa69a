"""Middleware configuration for the FastAPI application."""

import hmac
import os
import time
import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from app import __version__
from app.config import Settings
from app.routers import metrics

logger = structlog.get_logger(__name__)

# Reachable without the API key
PUBLIC_PATHS = frozenset({"/health", "/metrics", "/docs", "/openapi.json", "/redoc", "/"})


def setup_rate_limiter(app: FastAPI, settings: Settings) -> Limiter:
    """Set up rate limiter and attach to app."""
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[f"{settings.rate_limit_requests_per_minute}/minute"],
        enabled=settings.rate_limit_enabled,
    )
    app.state.limiter = limiter
    # mypy: slowapi handler signature differs from FastAPI expected type
    app.add_exception_handler(
        RateLimitExceeded, _rate_limit_exceeded_handler  # type: ignore[arg-type]
    )
    return limiter


def setup_cors(app: FastAPI) -> None:
    """Configure CORS middleware from CORS_ORIGINS (comma-separated)."""
    cors_origins_str = os.environ.get("CORS_ORIGINS", "*")
    if cors_origins_str == "*":
        cors_origins = ["*"]
        logger.warning("cors_allow_all_origins")
    else:
        cors_origins = [origin.strip() for origin in cors_origins_str.split(",")]
        logger.info("cors_origins_configured", origins=cors_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )


async def security_headers_middleware(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

    # HSTS only behind TLS
    if request.headers.get("X-Forwarded-Proto") == "https":
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )

    return response


def _reject(status_code: int, detail: str, request_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "retryable": False},
        headers={"X-Request-ID": request_id, "X-API-Version": __version__},
    )


def create_request_middleware(settings: Settings):
    """Create request middleware with settings closure."""

    async def request_middleware(request: Request, call_next):
        """Request ID, timing, body-size limit and optional API key check."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        if settings.api_key and request.url.path not in PUBLIC_PATHS:
            provided_key = request.headers.get(settings.api_key_header_name)
            if not provided_key:
                logger.warning("api_key_missing")
                return _reject(
                    401,
                    f"API key required. Provide key in {settings.api_key_header_name} header",
                    request_id,
                )
            if not hmac.compare_digest(provided_key.encode(), settings.api_key.encode()):
                logger.warning("api_key_invalid")
                return _reject(403, "Invalid API key", request_id)

        content_length = request.headers.get("content-length")
        if content_length and int(content_length) > settings.max_request_body_size:
            logger.warning(
                "request_body_too_large",
                content_length=int(content_length),
                max_size=settings.max_request_body_size,
            )
            return _reject(
                413,
                f"Request body too large. Maximum size is {settings.max_request_body_size} bytes",
                request_id,
            )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception("request_failed", error=str(e))
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal server error", "retryable": True},
                headers={"X-Request-ID": request_id, "X-API-Version": __version__},
            )

        duration_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"
        response.headers["X-API-Version"] = __version__

        # Skip /metrics to keep scrapes out of request metrics
        if request.url.path != "/metrics":
            route = request.scope.get("route")
            endpoint = getattr(route, "path", request.url.path)
            metrics.record_request(
                method=request.method,
                endpoint=endpoint,
                status_code=response.status_code,
                duration=duration_ms / 1000,
            )

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        return response

    return request_middleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Set up all middleware for the application."""
    setup_rate_limiter(app, settings)
    setup_cors(app)

    # Added first, runs last in the middleware stack
    app.middleware("http")(security_headers_middleware)

    app.middleware("http")(create_request_middleware(settings))
