"""Service layer for the integration job queue."""
