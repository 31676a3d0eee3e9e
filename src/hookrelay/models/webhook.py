"""Webhook subscription, event and job models.

A Subscription is an administrator-registered endpoint that wants to hear
about one trigger type. A DomainEvent is something that happened on the
platform. A DeliveryJob is the ephemeral unit of work binding the two; it
is never persisted except as a dead-letter entry.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, model_validator

from .base import generate_id, utc_now


class TriggerType(str, Enum):
    """Domain event categories a subscription can listen for."""

    CLICK = "click"
    CONVERSION = "conversion"
    POSTBACK = "postback"
    FRAUD = "fraud"
    USER_SIGNUP = "user_signup"


class SignatureMode(str, Enum):
    """How outbound payloads are signed."""

    NONE = "none"
    HMAC_SHA256 = "hmac-sha256"
    JWT = "jwt"


class SubscriptionStatus(str, Enum):
    """Subscription health.

    ERROR is only ever set by the dispatcher after repeated failures;
    administrators can only choose between ACTIVE and PAUSED.
    """

    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


# Statuses an administrator may set directly
USER_SETTABLE_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED})


class Subscription(BaseModel):
    """A registered webhook endpoint.

    Attributes:
        id: Unique identifier.
        name: Display name shown in the admin console.
        url: Endpoint receiving POSTed events.
        trigger_type: Event category this subscription listens for.
        signature_mode: Signing scheme for outbound payloads.
        secret: Shared secret; required unless signature_mode is "none".
        status: active, paused or error.
        success_rate: Exponential moving average of delivery success, 0-100.
        total_deliveries: Jobs that reached a terminal state.
        failed_deliveries: Jobs that ended in the dead-letter queue.
        consecutive_failures: Failed jobs since the last success.
        last_triggered_at: When the last job for this subscription finished.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    name: str = Field(min_length=1, max_length=255, description="Display name")
    url: HttpUrl = Field(description="Endpoint receiving events")
    trigger_type: TriggerType = Field(description="Event category to listen for")
    signature_mode: SignatureMode = Field(default=SignatureMode.NONE)
    secret: str | None = Field(default=None, description="Shared signing secret")
    status: SubscriptionStatus = Field(default=SubscriptionStatus.ACTIVE)
    success_rate: float = Field(default=100.0, ge=0.0, le=100.0)
    total_deliveries: int = Field(default=0, ge=0)
    failed_deliveries: int = Field(default=0, ge=0)
    consecutive_failures: int = Field(default=0, ge=0)
    last_triggered_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _require_secret_when_signing(self) -> Subscription:
        """A secret is kept exactly when payloads are signed."""
        if self.signature_mode is SignatureMode.NONE:
            self.secret = None
        elif not self.secret:
            raise ValueError(
                f"secret is required when signature_mode is {self.signature_mode.value}"
            )
        return self

    @property
    def is_active(self) -> bool:
        return self.status is SubscriptionStatus.ACTIVE

    def with_outcome(self, success: bool, weight: float, at: datetime) -> Subscription:
        """Return a copy with one terminal delivery outcome folded in.

        The success rate is an exponential moving average where each job
        contributes ``weight`` of the new value.
        """
        sample = 100.0 if success else 0.0
        rate = self.success_rate * (1.0 - weight) + sample * weight
        return self.model_copy(
            update={
                "success_rate": round(min(100.0, max(0.0, rate)), 4),
                "total_deliveries": self.total_deliveries + 1,
                "failed_deliveries": self.failed_deliveries + (0 if success else 1),
                "consecutive_failures": 0 if success else self.consecutive_failures + 1,
                "last_triggered_at": at,
                "updated_at": at,
            }
        )


class DomainEvent(BaseModel):
    """Something that happened on the platform and may trigger webhooks.

    Attributes:
        id: Unique event identifier; part of every derived idempotency key.
        trigger_type: Event category.
        occurred_at: When the event happened.
        data: Event-specific JSON payload.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=lambda: generate_id("evt"))
    trigger_type: TriggerType
    occurred_at: datetime = Field(default_factory=utc_now)
    data: dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """JSON body delivered to receivers."""
        return {
            "id": self.id,
            "type": self.trigger_type.value,
            "occurred_at": self.occurred_at.isoformat(),
            "data": self.data,
        }


def idempotency_key_for(event_id: str, subscription_id: str) -> str:
    """Stable key for one (event, subscription) pair."""
    return hashlib.sha256(f"{event_id}:{subscription_id}".encode()).hexdigest()


class DeliveryJob(BaseModel):
    """One event bound for one subscription.

    Jobs are immutable; each attempt produces a copy with a higher
    ``attempt_count`` and the same ``idempotency_key``.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    subscription_id: str
    event_id: str
    trigger_type: TriggerType
    payload: dict[str, Any]
    idempotency_key: str
    attempt_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    manual: bool = Field(default=False, description="Submitted by a manual DLQ retry")

    @classmethod
    def for_event(cls, event: DomainEvent, subscription: Subscription) -> DeliveryJob:
        return cls(
            subscription_id=subscription.id,
            event_id=event.id,
            trigger_type=event.trigger_type,
            payload=event.to_payload(),
            idempotency_key=idempotency_key_for(event.id, subscription.id),
        )

    @property
    def body(self) -> str:
        """Serialized payload; the exact bytes that get signed and sent."""
        return json.dumps(self.payload, separators=(",", ":"), sort_keys=True)

    def next_attempt(self) -> DeliveryJob:
        return self.model_copy(update={"attempt_count": self.attempt_count + 1})


__all__ = [
    "DeliveryJob",
    "DomainEvent",
    "SignatureMode",
    "Subscription",
    "SubscriptionStatus",
    "TriggerType",
    "USER_SETTABLE_STATUSES",
    "idempotency_key_for",
]
