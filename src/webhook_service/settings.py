"""Application settings."""
from __future__ import annotations

import warnings
from functools import lru_cache

from pydantic import model_validator

from sync_common.settings.base import BaseServiceSettings

_INSECURE_SUBSCRIPTION_SECRETS = frozenset({"default", "secret", "changeme", "test"})


class Settings(BaseServiceSettings):
    """Core configuration for the webhook broker."""

    app_name: str = "webhook-service"
    port: int = 3002

    # Delivery
    delivery_timeout_seconds: float = 30.0
    subscriber_error_threshold: int = 10  # deactivate once error_count exceeds this
    # Used to sign deliveries for subscribers that registered without a secret.
    default_subscription_secret: str = "default"

    # Event retention (replay / audit window)
    event_retention_hours: float = 24.0

    # Background worker
    worker_interval_seconds: float = 60.0

    @model_validator(mode="after")
    def _warn_insecure_default_secret(self) -> "Settings":
        """Subscribers without their own secret get signatures anyone can forge."""
        if self.default_subscription_secret in _INSECURE_SUBSCRIPTION_SECRETS:
            warnings.warn(
                "SECURITY WARNING: default_subscription_secret is a known insecure value "
                f"({self.default_subscription_secret!r}). Deliveries to subscribers registered "
                "without a secret can be forged; set DEFAULT_SUBSCRIPTION_SECRET or require "
                "subscribers to provide one.",
                stacklevel=1,
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
