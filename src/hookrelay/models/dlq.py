"""Dead-letter queue entry model."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utc_now
from .outcome import ErrorKind
from .webhook import DeliveryJob, TriggerType


class DLQEntry(BaseModel):
    """A delivery that exhausted its attempts and awaits manual action.

    Attributes:
        id: Unique identifier.
        subscription_id: Subscription the job was bound for.
        webhook_name: Subscription name at dead-letter time, for display.
        idempotency_key: Key of the failed job; at most one entry per key.
        event_id: Originating event.
        trigger_type: Originating event category.
        error_kind: Classified reason for the final failure.
        last_error: Human-readable error from the final attempt.
        attempts: Total attempts across automatic and manual runs.
        last_attempt_at: When the final attempt finished.
        payload: Snapshot of the delivered body.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("dlq"))
    subscription_id: str
    webhook_name: str
    idempotency_key: str
    event_id: str
    trigger_type: TriggerType
    error_kind: ErrorKind
    last_error: str
    attempts: int = Field(default=1, ge=0)
    last_attempt_at: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    payload: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_job(
        cls,
        job: DeliveryJob,
        webhook_name: str,
        error_kind: ErrorKind,
        last_error: str,
    ) -> DLQEntry:
        return cls(
            subscription_id=job.subscription_id,
            webhook_name=webhook_name,
            idempotency_key=job.idempotency_key,
            event_id=job.event_id,
            trigger_type=job.trigger_type,
            error_kind=error_kind,
            last_error=last_error,
            attempts=job.attempt_count,
            payload=job.payload,
        )

    def to_job(self) -> DeliveryJob:
        """Fresh job for a manual retry: attempts reset, same idempotency key."""
        return DeliveryJob(
            subscription_id=self.subscription_id,
            event_id=self.event_id,
            trigger_type=self.trigger_type,
            payload=self.payload,
            idempotency_key=self.idempotency_key,
            attempt_count=0,
            manual=True,
        )
