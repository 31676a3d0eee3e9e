"""Tagged result of a single delivery attempt."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from hookrelay.exceptions import DeliveryError


class OutcomeKind(str, Enum):
    """What the dispatcher should do with an attempt's result."""

    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    FATAL_FAILURE = "fatal_failure"


class ErrorKind(str, Enum):
    """Classified failure reasons recorded on dead-letter entries."""

    NETWORK_ERROR = "network_error"
    HTTP_REDIRECT = "http_redirect"
    HTTP_CLIENT_ERROR = "http_client_error"
    HTTP_RATE_LIMITED = "http_rate_limited"
    HTTP_SERVER_ERROR = "http_server_error"
    RETRY_EXHAUSTED = "retry_exhausted"
    CONFIGURATION_ERROR = "configuration_error"
    CANCELLED = "cancelled"
    STORAGE_ERROR = "storage_error"


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of one attempt.

    Exactly one of the three kinds; failures carry the classified error.
    Build instances through the ``success``/``failure`` constructors.
    """

    kind: OutcomeKind
    status_code: int | None = None
    error: DeliveryError | None = None
    elapsed_ms: int | None = None

    @classmethod
    def success(cls, status_code: int, elapsed_ms: int | None = None) -> DeliveryOutcome:
        return cls(kind=OutcomeKind.SUCCESS, status_code=status_code, elapsed_ms=elapsed_ms)

    @classmethod
    def failure(cls, error: DeliveryError, elapsed_ms: int | None = None) -> DeliveryOutcome:
        kind = OutcomeKind.RETRYABLE_FAILURE if error.retryable else OutcomeKind.FATAL_FAILURE
        return cls(kind=kind, status_code=error.status_code, error=error, elapsed_ms=elapsed_ms)

    @property
    def is_success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def error_kind(self) -> ErrorKind | None:
        return self.error.error_kind if self.error is not None else None

    def describe(self) -> str:
        if self.error is not None:
            return self.error.message
        return f"HTTP {self.status_code}"
