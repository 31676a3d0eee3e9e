"""In-process store for development, tests and single-node deployments."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from hookrelay.models import DLQEntry, Subscription, SubscriptionStatus, TriggerType, utc_now

from .base import apply_changes


class InMemoryWebhookStore:
    """Dictionary-backed WebhookStore.

    All mutations run under one asyncio lock, so read-modify-write updates
    such as record_outcome never lose writes.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._dlq: dict[str, DLQEntry] = {}
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        return None

    # Subscriptions

    async def create_subscription(self, subscription: Subscription) -> Subscription:
        async with self._lock:
            self._subscriptions[subscription.id] = subscription
        return subscription

    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        return self._subscriptions.get(subscription_id)

    async def list_subscriptions(self) -> list[Subscription]:
        return sorted(self._subscriptions.values(), key=lambda s: s.created_at, reverse=True)

    async def update_subscription(
        self, subscription_id: str, **changes: Any
    ) -> Subscription | None:
        async with self._lock:
            current = self._subscriptions.get(subscription_id)
            if current is None:
                return None
            updated = apply_changes(current, changes, utc_now())
            self._subscriptions[subscription_id] = updated
            return updated

    async def delete_subscription(self, subscription_id: str) -> bool:
        async with self._lock:
            removed = self._subscriptions.pop(subscription_id, None)
            for entry_id in [
                e.id for e in self._dlq.values() if e.subscription_id == subscription_id
            ]:
                del self._dlq[entry_id]
        return removed is not None

    async def find_active_by_trigger(self, trigger_type: TriggerType) -> list[Subscription]:
        return [
            s
            for s in self._subscriptions.values()
            if s.trigger_type is trigger_type and s.status is SubscriptionStatus.ACTIVE
        ]

    async def record_outcome(
        self,
        subscription_id: str,
        success: bool,
        *,
        weight: float = 0.1,
        at: datetime | None = None,
    ) -> Subscription | None:
        async with self._lock:
            current = self._subscriptions.get(subscription_id)
            if current is None:
                return None
            updated = current.with_outcome(success, weight, at or utc_now())
            self._subscriptions[subscription_id] = updated
            return updated

    async def set_status(
        self, subscription_id: str, status: SubscriptionStatus
    ) -> Subscription | None:
        async with self._lock:
            current = self._subscriptions.get(subscription_id)
            if current is None:
                return None
            updated = current.model_copy(update={"status": status, "updated_at": utc_now()})
            self._subscriptions[subscription_id] = updated
            return updated

    # Dead-letter entries

    async def save_dlq_entry(self, entry: DLQEntry) -> DLQEntry:
        async with self._lock:
            self._dlq[entry.id] = entry
        return entry

    async def get_dlq_entry(self, entry_id: str) -> DLQEntry | None:
        return self._dlq.get(entry_id)

    async def find_dlq_entry(self, idempotency_key: str) -> DLQEntry | None:
        for entry in self._dlq.values():
            if entry.idempotency_key == idempotency_key:
                return entry
        return None

    async def list_dlq_entries(
        self, subscription_id: str | None = None, limit: int = 100
    ) -> list[DLQEntry]:
        entries = [
            e
            for e in self._dlq.values()
            if subscription_id is None or e.subscription_id == subscription_id
        ]
        entries.sort(key=lambda e: e.last_attempt_at, reverse=True)
        return entries[:limit]

    async def delete_dlq_entry(self, entry_id: str) -> bool:
        async with self._lock:
            return self._dlq.pop(entry_id, None) is not None

    async def delete_dlq_entries_for_subscription(self, subscription_id: str) -> int:
        async with self._lock:
            doomed = [e.id for e in self._dlq.values() if e.subscription_id == subscription_id]
            for entry_id in doomed:
                del self._dlq[entry_id]
        return len(doomed)

    async def count_dlq_entries(self) -> int:
        return len(self._dlq)
