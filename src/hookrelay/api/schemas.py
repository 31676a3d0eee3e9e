"""Request and response schemas for the Hookrelay API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from hookrelay.models import (
    DLQEntry,
    ErrorKind,
    SignatureMode,
    Subscription,
    SubscriptionStatus,
    TriggerType,
)


class HealthResponse(BaseModel):
    status: str
    version: str
    in_flight: int = 0


class SubscriptionCreateRequest(BaseModel):
    """Register a webhook."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    url: str = Field(description="Endpoint receiving POSTed events")
    trigger_type: TriggerType
    signature_mode: SignatureMode = SignatureMode.NONE
    secret: str | None = Field(default=None, description="Required unless signature_mode is none")


class SubscriptionUpdateRequest(BaseModel):
    """Partial edit. Status accepts only active or paused."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    url: str | None = None
    trigger_type: TriggerType | None = None
    signature_mode: SignatureMode | None = None
    secret: str | None = None
    status: SubscriptionStatus | None = None


class SubscriptionResponse(BaseModel):
    """A subscription as shown in the console; the secret is never returned."""

    id: str
    name: str
    url: str
    trigger_type: TriggerType
    signature_mode: SignatureMode
    status: SubscriptionStatus
    success_rate: float
    total_deliveries: int
    failed_deliveries: int
    consecutive_failures: int
    last_triggered_at: datetime | None
    created_at: datetime

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> SubscriptionResponse:
        return cls(
            id=subscription.id,
            name=subscription.name,
            url=str(subscription.url),
            trigger_type=subscription.trigger_type,
            signature_mode=subscription.signature_mode,
            status=subscription.status,
            success_rate=subscription.success_rate,
            total_deliveries=subscription.total_deliveries,
            failed_deliveries=subscription.failed_deliveries,
            consecutive_failures=subscription.consecutive_failures,
            last_triggered_at=subscription.last_triggered_at,
            created_at=subscription.created_at,
        )


class SubscriptionDeleteResponse(BaseModel):
    deleted: bool
    dlq_purged: int


class StatsResponse(BaseModel):
    total: int
    active: int
    total_deliveries: int
    dlq_items: int


class DLQEntryResponse(BaseModel):
    id: str
    subscription_id: str
    webhook_name: str
    idempotency_key: str
    event_id: str
    trigger_type: TriggerType
    error_kind: ErrorKind
    last_error: str
    attempts: int
    last_attempt_at: datetime
    payload: dict[str, Any]

    @classmethod
    def from_entry(cls, entry: DLQEntry) -> DLQEntryResponse:
        return cls.model_validate(entry.model_dump(exclude={"created_at"}))


class DLQRetryResponse(BaseModel):
    entry_id: str
    idempotency_key: str
    queued: bool = True


class EventRequest(BaseModel):
    """A domain event from the platform."""

    model_config = ConfigDict(extra="forbid")

    trigger_type: TriggerType
    data: dict[str, Any] = Field(default_factory=dict)
    id: str | None = Field(default=None, description="Event ID; generated if omitted")
    occurred_at: datetime | None = None


class EventResponse(BaseModel):
    event_id: str
    jobs_queued: int
    subscription_ids: list[str]
