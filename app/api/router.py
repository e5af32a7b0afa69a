"""API router aggregation - includes all application routers."""

from fastapi import APIRouter

from app.routers import health, integrations, interventions, jobs, metrics

# Main API router
api_router = APIRouter()

# Health and metrics
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(metrics.router)  # Metrics endpoint (excluded from OpenAPI)

# Job queue
api_router.include_router(jobs.router, tags=["Jobs"])
api_router.include_router(interventions.router, tags=["Interventions"])

# Integration health and gated proxy
api_router.include_router(integrations.router, tags=["Integrations"])
