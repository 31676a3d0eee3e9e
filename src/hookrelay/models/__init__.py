"""Data models for Hookrelay.

Subscription Types:
    - Subscription: Registered webhook endpoint
    - TriggerType, SignatureMode, SubscriptionStatus: Tagged enums

Delivery Types:
    - DomainEvent: Something that happened on the platform
    - DeliveryJob: One event bound for one subscription
    - DeliveryOutcome: Result of one attempt (success / retryable / fatal)
    - DLQEntry: A delivery that exhausted its attempts
"""

from .base import generate_id, utc_now
from .dlq import DLQEntry
from .outcome import DeliveryOutcome, ErrorKind, OutcomeKind
from .webhook import (
    USER_SETTABLE_STATUSES,
    DeliveryJob,
    DomainEvent,
    SignatureMode,
    Subscription,
    SubscriptionStatus,
    TriggerType,
    idempotency_key_for,
)

__all__ = [
    # Helpers
    "generate_id",
    "utc_now",
    "idempotency_key_for",
    # Subscriptions
    "Subscription",
    "SubscriptionStatus",
    "SignatureMode",
    "TriggerType",
    "USER_SETTABLE_STATUSES",
    # Delivery
    "DomainEvent",
    "DeliveryJob",
    "DeliveryOutcome",
    "OutcomeKind",
    "ErrorKind",
    "DLQEntry",
]
