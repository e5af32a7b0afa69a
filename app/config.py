"""Configuration management using Pydantic Settings."""

from datetime import timedelta
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.jobs.types import IntegrationType


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Configuration
    service_host: str = Field(default="0.0.0.0", description="Service host")
    service_port: int = Field(default=8000, description="Service port")
    log_level: str = Field(default="INFO", description="Logging level")
    git_sha: Optional[str] = Field(
        default=None, description="Git commit SHA reported by /health"
    )

    # Job Queue
    queue_tick_interval_s: float = Field(
        default=5.0, gt=0, description="Seconds between scheduling ticks"
    )
    queue_max_concurrent: int = Field(
        default=5, ge=1, description="Maximum jobs executing at once"
    )
    queue_job_retention_hours: float = Field(
        default=24.0, gt=0, description="Age after which terminal jobs are removed"
    )
    queue_cleanup_interval_s: float = Field(
        default=3600.0, gt=0, description="Seconds between retention sweeps"
    )
    queue_autostart: bool = Field(
        default=True, description="Start the scheduler with the application"
    )

    # Integration Health
    health_degraded_threshold: int = Field(
        default=1, ge=1, description="Consecutive failures before DEGRADED"
    )
    health_monitor_interval_s: float = Field(
        default=10.0, gt=0, description="Seconds between health monitor passes"
    )
    health_recovery_timeout_s: float = Field(
        default=30.0, ge=0, description="Seconds a FAILED integration waits before recovery"
    )
    health_recovery_trial_calls: int = Field(
        default=3, ge=1, description="Probes allowed while RECOVERING"
    )

    # Request Gate
    gate_failed_retry_after_s: float = Field(
        default=30.0, description="Suggested retry delay when an integration FAILED"
    )
    gate_recovering_retry_after_s: float = Field(
        default=60.0, description="Suggested retry delay while RECOVERING"
    )
    gate_maintenance_retry_after_s: float = Field(
        default=300.0, description="Suggested retry delay during MAINTENANCE"
    )
    support_url: str = Field(
        default="/support", description="Support link offered on rejected requests"
    )
    gate_fallback_integrations: list[str] = Field(
        default_factory=list,
        description="Integrations whose proxied GETs answer from the last good response while FAILED",
    )

    # Integration Clients
    integration_base_urls: dict[str, str] = Field(
        default_factory=dict,
        description='JSON mapping of integration to base URL, e.g. {"email": "https://..."}',
    )
    integration_health_path: str = Field(
        default="/health", description="Health probe path on every integration"
    )
    integration_timeout_s: float = Field(
        default=10.0, gt=0, description="Integration request timeout in seconds"
    )

    # Rate limiting
    rate_limit_enabled: bool = Field(
        default=True, description="Enable rate limiting"
    )
    rate_limit_requests_per_minute: int = Field(
        default=60, description="Maximum requests per minute per IP"
    )

    # Request size limits
    max_request_body_size: int = Field(
        default=10 * 1024 * 1024,  # 10 MB
        description="Maximum request body size in bytes"
    )

    # API Key Authentication
    api_key: Optional[str] = Field(
        default=None,
        description="Optional API key for authentication. If set, all requests must include X-API-Key header"
    )
    api_key_header_name: str = Field(
        default="X-API-Key",
        description="Header name for API key"
    )

    # Sentry Observability
    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN for error tracking and performance monitoring"
    )
    sentry_environment: str = Field(
        default="development",
        description="Sentry environment tag (development, staging, production)"
    )
    sentry_traces_sample_rate: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sentry performance tracing sample rate (0.0-1.0)"
    )
    sentry_profiles_sample_rate: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sentry profiling sample rate (0.0-1.0)"
    )

    @field_validator("integration_base_urls", "gate_fallback_integrations")
    @classmethod
    def _known_integrations(cls, value):
        known = {integration.value for integration in IntegrationType}
        unknown = sorted(set(value) - known)
        if unknown:
            raise ValueError(f"Unknown integrations: {', '.join(unknown)}")
        return value

    @property
    def job_retention(self) -> timedelta:
        """Retention window for terminal jobs."""
        return timedelta(hours=self.queue_job_retention_hours)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
