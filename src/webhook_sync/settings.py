"""Application settings."""
from __future__ import annotations

import warnings
from functools import lru_cache

from pydantic import Field, model_validator

from sync_common.settings.base import BaseServiceSettings

_INSECURE_WEBHOOK_SECRETS = frozenset({"default", "secret", "changeme", "test", "webhook-sync-secret"})


class Settings(BaseServiceSettings):
    """Core configuration for the webhook sync consumer."""

    app_name: str = "webhook-sync"
    port: int = 3004

    # CRM (source of truth for full object state)
    crm_api_url: str = "http://localhost:3001"
    crm_objects_path: str = "/crm/v3/objects"
    crm_timeout_seconds: float = 10.0

    # Analytics sink
    sink_api_url: str = "http://localhost:3003"
    sink_api_token: str = "webhook-sync-token"
    sink_timeout_seconds: float = 15.0
    sink_source_prefix: str = "CRM-Webhook"

    # Broker registration
    broker_url: str = "http://localhost:3002"
    broker_subscribe_on_startup: bool = True
    public_webhook_url: str = "http://webhook-sync:3004/webhook"
    broker_event_patterns: list[str] = Field(
        default_factory=lambda: ["company.propertyChange", "company.creation", "contact", "deal"]
    )

    # Intake
    webhook_secret: str = "webhook-sync-secret"
    webhook_verify_signature: bool = True
    processing_delay_seconds: float = 1.0
    coalesce_enabled: bool = True

    # Retry queue
    max_attempts: int = 3
    backoff_base_seconds: float = 2.0
    backoff_multiplier: float = 2.0
    backoff_max_seconds: float = 60.0
    worker_concurrency: int = 4
    poll_interval_seconds: float = 0.2

    # Background worker
    worker_interval_seconds: float = 30.0
    job_stuck_seconds: float = 300.0  # reclaim processing jobs locked longer than this
    job_done_retention_hours: float = 24.0  # purge done jobs older than this

    @model_validator(mode="after")
    def _check_signature_policy(self) -> "Settings":
        if not self.webhook_verify_signature:
            if self.env == "production":
                raise ValueError("webhook_verify_signature cannot be disabled in production")
            warnings.warn(
                "Webhook signature verification is DISABLED. Any client can enqueue jobs; "
                "use this only for local debugging.",
                stacklevel=1,
            )
        elif self.webhook_secret in _INSECURE_WEBHOOK_SECRETS:
            warnings.warn(
                "SECURITY WARNING: webhook_secret is set to a known insecure default "
                f"({self.webhook_secret!r}). Set WEBHOOK_SECRET before deploying.",
                stacklevel=1,
            )
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.worker_concurrency < 1:
            raise ValueError("worker_concurrency must be at least 1")
        return self


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
