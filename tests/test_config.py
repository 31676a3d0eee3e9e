"""Unit tests for Hookrelay configuration."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from hookrelay.config import DEFAULT_RETRY_SCHEDULE, Settings


class TestSettings:
    """Tests for Settings defaults and validation."""

    def test_defaults(self):
        """Defaults match the documented delivery policy."""
        settings = Settings()
        assert settings.storage_backend == "memory"
        assert settings.delivery_timeout_seconds == 10.0
        assert settings.max_concurrent_deliveries == 20
        assert settings.per_subscription_concurrency == 3
        assert settings.retry_schedule_seconds == DEFAULT_RETRY_SCHEDULE
        assert settings.max_attempts == 5
        assert settings.failure_threshold == 10
        assert settings.dlq_list_limit == 100

    def test_env_prefix(self):
        """Settings should load from HOOKRELAY_ environment variables."""
        env = {
            "HOOKRELAY_MAX_CONCURRENT_DELIVERIES": "50",
            "HOOKRELAY_STORAGE_BACKEND": "qdrant",
            "HOOKRELAY_RETRY_SCHEDULE_SECONDS": "[2, 4, 8]",
        }
        with patch.dict(os.environ, env):
            settings = Settings()
        assert settings.max_concurrent_deliveries == 50
        assert settings.storage_backend == "qdrant"
        assert settings.retry_schedule_seconds == [2.0, 4.0, 8.0]

    def test_empty_schedule_rejected(self):
        with pytest.raises(ValidationError):
            Settings(retry_schedule_seconds=[])

    def test_non_positive_delay_rejected(self):
        with pytest.raises(ValidationError):
            Settings(retry_schedule_seconds=[1, 0, 5])

    def test_short_schedule_allowed(self):
        """A schedule shorter than max_attempts repeats its last delay."""
        settings = Settings(retry_schedule_seconds=[1], max_attempts=5)
        assert settings.retry_schedule_seconds == [1.0]

    def test_per_subscription_cannot_exceed_pool(self):
        with pytest.raises(ValidationError):
            Settings(max_concurrent_deliveries=2, per_subscription_concurrency=3)

    def test_bounds(self):
        with pytest.raises(ValidationError):
            Settings(delivery_timeout_seconds=0)
        with pytest.raises(ValidationError):
            Settings(max_attempts=0)
        with pytest.raises(ValidationError):
            Settings(success_rate_weight=1.5)

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            Settings(storage_backend="postgres")
