"""Webhook delivery engine for Hookrelay.

Signed HTTP delivery with a fixed retry schedule, per-subscription
backpressure and a dead-letter queue.

Example:
    ```python
    from hookrelay.webhooks import DeliveryExecutor, DLQManager, WebhookDispatcher

    dlq = DLQManager(store)
    dispatcher = WebhookDispatcher(store, DeliveryExecutor(), dlq)
    await dispatcher.dispatch(event)
    ```
"""

from .backoff import BackoffPolicy, RetryDecision
from .dispatcher import DispatchStats, WebhookDispatcher
from .dlq import DLQManager
from .executor import DeliveryExecutor
from .signing import (
    IDEMPOTENCY_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    compute_hmac_signature,
    compute_jwt_signature,
    sign,
    verify_hmac_signature,
    verify_jwt_signature,
)

__all__ = [
    "BackoffPolicy",
    "DLQManager",
    "DeliveryExecutor",
    "DispatchStats",
    "IDEMPOTENCY_HEADER",
    "RetryDecision",
    "SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "WebhookDispatcher",
    "compute_hmac_signature",
    "compute_jwt_signature",
    "sign",
    "verify_hmac_signature",
    "verify_jwt_signature",
]
