"""Integration Job Queue - FastAPI Application."""

import logging

import structlog
from fastapi import FastAPI

from app import __version__
from app.api.router import api_router
from app.config import get_settings
from app.core.lifespan import lifespan
from app.core.middleware import setup_middleware
from app.core.sentry import init_sentry
from app.deps.integration import IntegrationGateError, integration_gate_exception_handler

settings = get_settings()

logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

init_sentry(settings)

app = FastAPI(
    title="Integration Job Queue",
    description="Resilient job orchestration and integration health gating",
    version=__version__,
    lifespan=lifespan,
)

setup_middleware(app, settings)
app.add_exception_handler(
    IntegrationGateError, integration_gate_exception_handler  # type: ignore[arg-type]
)
app.include_router(api_router)


@app.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "Integration Job Queue",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }
