"""Configuration management for Hookrelay."""

import logging
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_RETRY_SCHEDULE = [1.0, 5.0, 30.0, 300.0, 1800.0]


class Settings(BaseSettings):
    """Hookrelay configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the HOOKRELAY_ prefix. For example:
        HOOKRELAY_STORAGE_BACKEND=qdrant
        HOOKRELAY_MAX_CONCURRENT_DELIVERIES=50
        HOOKRELAY_RETRY_SCHEDULE_SECONDS='[1, 5, 30, 300, 1800]'
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    storage_backend: Literal["memory", "qdrant"] = Field(
        default="memory",
        description="Subscription/DLQ store: in-process memory or Qdrant",
    )
    qdrant_url: str = Field(
        default="http://localhost:6333",
        description="Qdrant connection URL",
    )
    qdrant_api_key: str | None = Field(
        default=None,
        description="Qdrant API key (for cloud)",
    )
    collection_prefix: str = Field(
        default="hookrelay",
        description="Prefix for Qdrant collection names",
    )

    # Delivery
    delivery_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Per-attempt HTTP timeout",
    )
    max_concurrent_deliveries: int = Field(
        default=20,
        ge=1,
        le=1000,
        description="Global cap on in-flight HTTP attempts across all subscriptions",
    )
    per_subscription_concurrency: int = Field(
        default=3,
        ge=1,
        le=50,
        description=(
            "Maximum jobs in progress for one subscription. Further jobs wait, "
            "which applies backpressure against slow or failing endpoints."
        ),
    )
    retry_schedule_seconds: list[float] = Field(
        default_factory=lambda: list(DEFAULT_RETRY_SCHEDULE),
        description="Delay before each retry; the last entry repeats if attempts outnumber it",
    )
    max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Total attempts per job before it is dead-lettered",
    )
    user_agent: str = Field(
        default="hookrelay/0.1.0",
        description="User-Agent header on outbound requests",
    )

    # Subscription health
    success_rate_weight: float = Field(
        default=0.1,
        gt=0.0,
        le=1.0,
        description="Weight of each new outcome in the success-rate moving average",
    )
    failure_threshold: int = Field(
        default=10,
        ge=1,
        description="Consecutive failed jobs before a subscription is set to error",
    )

    # Dead-letter queue
    dlq_list_limit: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Default number of DLQ entries returned by list operations",
    )

    # Event ingestion
    ingest_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts at reaching the registry before an emit fails",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    # CORS Configuration
    cors_enabled: bool = Field(
        default=True,
        description="Enable CORS middleware",
    )
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description=(
            "List of allowed CORS origins. Use ['*'] for permissive mode (dev only). "
            "In production, specify exact origins like ['https://admin.example.com']."
        ),
    )
    cors_allow_methods: list[str] = Field(
        default_factory=lambda: ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        description="Allowed HTTP methods for CORS requests",
    )
    cors_allow_headers: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed headers for CORS requests",
    )

    model_config = {
        "env_prefix": "HOOKRELAY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def validate_retry_schedule(self) -> "Settings":
        """The schedule must contain at least one strictly positive delay."""
        if not self.retry_schedule_seconds:
            raise ValueError("retry_schedule_seconds must not be empty")
        if any(delay <= 0 for delay in self.retry_schedule_seconds):
            raise ValueError(
                f"retry_schedule_seconds must be positive, got {self.retry_schedule_seconds}"
            )
        if len(self.retry_schedule_seconds) < self.max_attempts - 1:
            logger.debug(
                "Retry schedule has %d entries for %d attempts; last delay repeats",
                len(self.retry_schedule_seconds),
                self.max_attempts,
            )
        return self

    @model_validator(mode="after")
    def validate_concurrency(self) -> "Settings":
        """A subscription cannot use more slots than the whole pool."""
        if self.per_subscription_concurrency > self.max_concurrent_deliveries:
            raise ValueError(
                f"per_subscription_concurrency ({self.per_subscription_concurrency}) must not "
                f"exceed max_concurrent_deliveries ({self.max_concurrent_deliveries})"
            )
        return self


# Global settings instance
settings = Settings()
