"""API routers for the integration job queue."""

from app.routers import health, integrations, interventions, jobs, metrics

__all__ = ["health", "integrations", "interventions", "jobs", "metrics"]
