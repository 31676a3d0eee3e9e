"""Hookrelay: signed webhook delivery for affiliate-platform events.

Notifies registered subscriptions whenever a click, conversion, postback,
fraud flag or signup happens, with HMAC or JWT signatures, a fixed retry
schedule and a dead-letter queue for deliveries that run out of attempts.

Quick Start:
    from hookrelay.service import WebhookService

    async with WebhookService.create() as relay:
        await relay.create_subscription(
            name="Partner conversions",
            url="https://partner.example.com/hooks",
            trigger_type="conversion",
            signature_mode="hmac-sha256",
            secret="s3cr3t",
        )
        await relay.emit("conversion", {"offer_id": "off_1"})

Delivery Guarantees:
    - At-least-once, with a stable X-Idempotency-Key per (event, subscription)
    - Up to 5 attempts, waiting 1s, 5s, 30s and 5m between them
    - 4xx (other than 429) fails at once; 3xx, 429, 5xx and network errors retry
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, settings

# Exceptions
from .exceptions import (
    ConfigurationError,
    DeliveryError,
    HookrelayError,
    HTTPClientError,
    HTTPRateLimited,
    HTTPRedirectError,
    HTTPServerError,
    NetworkError,
    NotFoundError,
    RetryExhausted,
    StorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    logger,
    unbind_context,
)

# Models
from .models import (
    DeliveryJob,
    DeliveryOutcome,
    DLQEntry,
    DomainEvent,
    ErrorKind,
    OutcomeKind,
    SignatureMode,
    Subscription,
    SubscriptionStatus,
    TriggerType,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "settings",
    # Exceptions
    "ConfigurationError",
    "DeliveryError",
    "HTTPClientError",
    "HTTPRateLimited",
    "HTTPRedirectError",
    "HTTPServerError",
    "HookrelayError",
    "NetworkError",
    "NotFoundError",
    "RetryExhausted",
    "StorageError",
    "ValidationError",
    # Logging
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "logger",
    "unbind_context",
    # Models
    "DLQEntry",
    "DeliveryJob",
    "DeliveryOutcome",
    "DomainEvent",
    "ErrorKind",
    "OutcomeKind",
    "SignatureMode",
    "Subscription",
    "SubscriptionStatus",
    "TriggerType",
]
