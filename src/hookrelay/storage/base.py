"""Store interface consumed by the delivery engine.

The engine needs three registry calls (find_active_by_trigger,
record_outcome, set_status); the admin surface needs plain CRUD over
subscriptions and dead-letter entries. Any persistence layer providing
these coroutines can back Hookrelay.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from hookrelay.models import DLQEntry, Subscription, SubscriptionStatus, TriggerType


@runtime_checkable
class SubscriptionRegistry(Protocol):
    """Read side and health updates used by the dispatcher."""

    async def find_active_by_trigger(self, trigger_type: TriggerType) -> list[Subscription]: ...

    async def get_subscription(self, subscription_id: str) -> Subscription | None: ...

    async def record_outcome(
        self,
        subscription_id: str,
        success: bool,
        *,
        weight: float = 0.1,
        at: datetime | None = None,
    ) -> Subscription | None: ...

    async def set_status(
        self, subscription_id: str, status: SubscriptionStatus
    ) -> Subscription | None: ...


@runtime_checkable
class WebhookStore(SubscriptionRegistry, Protocol):
    """Full store: registry plus subscription and DLQ CRUD."""

    async def initialize(self) -> None: ...

    async def close(self) -> None: ...

    async def create_subscription(self, subscription: Subscription) -> Subscription: ...

    async def list_subscriptions(self) -> list[Subscription]: ...

    async def update_subscription(
        self, subscription_id: str, **changes: Any
    ) -> Subscription | None: ...

    async def delete_subscription(self, subscription_id: str) -> bool:
        """Delete a subscription and every DLQ entry referencing it."""
        ...

    async def save_dlq_entry(self, entry: DLQEntry) -> DLQEntry: ...

    async def get_dlq_entry(self, entry_id: str) -> DLQEntry | None: ...

    async def find_dlq_entry(self, idempotency_key: str) -> DLQEntry | None: ...

    async def list_dlq_entries(
        self, subscription_id: str | None = None, limit: int = 100
    ) -> list[DLQEntry]: ...

    async def delete_dlq_entry(self, entry_id: str) -> bool: ...

    async def delete_dlq_entries_for_subscription(self, subscription_id: str) -> int: ...

    async def count_dlq_entries(self) -> int: ...


def apply_changes(
    subscription: Subscription, changes: dict[str, Any], at: datetime
) -> Subscription:
    """Validate and apply field changes to a subscription.

    Raises pydantic.ValidationError if the result is invalid, for example
    a signing mode without a secret.
    """
    data = subscription.model_dump()
    data.update(changes)
    data["updated_at"] = at
    return Subscription.model_validate(data)
