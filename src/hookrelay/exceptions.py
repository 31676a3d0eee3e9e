"""Hookrelay exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from HookrelayError for easy catching.

Delivery failures are modelled as DeliveryError subclasses. They classify
the outcome of a single attempt and render the human-readable strings shown
in dead-letter entries; the dispatcher contains them and never lets them
reach the code that emitted the event.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hookrelay.models.outcome import ErrorKind


class HookrelayError(Exception):
    """Base exception for all Hookrelay errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "hookrelay_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(HookrelayError):
    """Invalid input provided.

    Raised when an administrative request fails validation, for example
    an attempt to set a subscription's status to "error" by hand.

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(HookrelayError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "subscription", "dlq_entry").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class StorageError(HookrelayError):
    """Storage operation failed.

    Raised when the subscription registry or DLQ store cannot be reached.
    Fatal to the dispatch cycle of the event being processed.
    """

    code: str = "storage_error"


class ConfigurationError(HookrelayError):
    """Configuration error.

    Raised when a subscription's signing configuration is unusable (a
    signature mode other than "none" without a secret). Jobs failing this
    way are rejected before any delivery attempt is counted.
    """

    code: str = "configuration_error"


class DeliveryError(HookrelayError):
    """A classified failure of one delivery attempt.

    Attributes:
        error_kind: Classification used by the backoff policy and DLQ.
        retryable: Whether another attempt may succeed.
        status_code: HTTP status, when a response was received.
    """

    code: str = "delivery_error"
    retryable: bool = False

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)

    @property
    def error_kind(self) -> ErrorKind:
        from hookrelay.models.outcome import ErrorKind

        return ErrorKind(self.code)


class NetworkError(DeliveryError):
    """Timeout, refused connection, DNS failure or similar transport error."""

    code: str = "network_error"
    retryable = True


class HTTPRedirectError(DeliveryError):
    """Receiver answered 3xx. Redirects are not followed."""

    code: str = "http_redirect"
    retryable = True


class HTTPClientError(DeliveryError):
    """Receiver rejected the request deterministically (4xx other than 429)."""

    code: str = "http_client_error"


class HTTPRateLimited(DeliveryError):
    """Receiver answered 429."""

    code: str = "http_rate_limited"
    retryable = True


class HTTPServerError(DeliveryError):
    """Receiver answered 5xx."""

    code: str = "http_server_error"
    retryable = True


class RetryExhausted(DeliveryError):
    """Every scheduled attempt failed with a retryable error.

    This is the backoff policy's verdict, not an attempt outcome.

    Attributes:
        attempts: Number of attempts made.
        last_error: The final attempt's classified error.
    """

    code: str = "retry_exhausted"

    def __init__(self, attempts: int, last_error: DeliveryError) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Max retries exceeded after {attempts} attempts: {last_error.message}",
            status_code=last_error.status_code,
        )


def classify_status(status_code: int) -> DeliveryError | None:
    """Map an HTTP status to its failure class, or None for 2xx."""
    if 200 <= status_code < 300:
        return None
    if status_code == 429:
        return HTTPRateLimited("HTTP 429: rate limited by receiver", status_code)
    if 300 <= status_code < 400:
        return HTTPRedirectError(f"HTTP {status_code}: unexpected redirect", status_code)
    if 400 <= status_code < 500:
        return HTTPClientError(f"HTTP {status_code}: rejected by receiver", status_code)
    if status_code >= 500:
        return HTTPServerError(f"HTTP {status_code}: receiver error", status_code)
    # 1xx never reaches us as a final response; treat as transport noise
    return NetworkError(f"HTTP {status_code}: unexpected informational response", status_code)
