"""Qdrant-backed store.

Subscriptions and dead-letter entries live in payload-only collections:
each point carries a one-dimensional placeholder vector and the model's
JSON as payload, and every query is a payload filter.
"""

from __future__ import annotations

import asyncio
import hashlib
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel
from qdrant_client import AsyncQdrantClient, models

from hookrelay.config import settings
from hookrelay.models import DLQEntry, Subscription, SubscriptionStatus, TriggerType, utc_now

from .base import apply_changes
from .retry import store_operation

ModelT = TypeVar("ModelT", Subscription, DLQEntry)

COLLECTIONS = {
    "subscriptions": ("trigger_type", "status"),
    "dlq": ("subscription_id", "idempotency_key"),
}

PLACEHOLDER_VECTOR = [0.0]
SCROLL_PAGE_SIZE = 256


class QdrantWebhookStore:
    """WebhookStore on top of Qdrant.

    Read-modify-write operations (record_outcome, set_status, updates) are
    serialized by an in-process lock; run one writer process per
    collection prefix.
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        prefix: str | None = None,
        client: AsyncQdrantClient | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            url: Qdrant server URL. Defaults to settings.qdrant_url.
            api_key: Qdrant API key. Defaults to settings.qdrant_api_key.
            prefix: Collection name prefix. Defaults to settings.collection_prefix.
            client: Pre-built client, e.g. AsyncQdrantClient(location=":memory:").
        """
        self._url = url or settings.qdrant_url
        self._api_key = api_key or settings.qdrant_api_key
        self._prefix = prefix or settings.collection_prefix
        self._client = client
        self._owns_client = client is None
        self._lock = asyncio.Lock()

    @property
    def client(self) -> AsyncQdrantClient:
        """Get the Qdrant client, raising if not initialized."""
        if self._client is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._client

    async def initialize(self) -> None:
        """Connect and ensure collections exist."""
        if self._client is None:
            self._client = AsyncQdrantClient(url=self._url, api_key=self._api_key)
        await self._ensure_collections()

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.close()
            self._client = None

    async def __aenter__(self) -> QdrantWebhookStore:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _collection_name(self, kind: str) -> str:
        return f"{self._prefix}_{kind}"

    @staticmethod
    def _point_id(record_id: str) -> str:
        """Qdrant point IDs must be UUIDs; derive one from the record ID."""
        h = hashlib.sha256(record_id.encode()).hexdigest()[:32]
        return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"

    async def _ensure_collections(self) -> None:
        existing = {c.name for c in (await self.client.get_collections()).collections}
        for kind, indexed_fields in COLLECTIONS.items():
            name = self._collection_name(kind)
            if name in existing:
                continue
            await self.client.create_collection(
                collection_name=name,
                vectors_config=models.VectorParams(
                    size=len(PLACEHOLDER_VECTOR),
                    distance=models.Distance.EUCLID,
                ),
            )
            for field_name in indexed_fields:
                await self.client.create_payload_index(
                    collection_name=name,
                    field_name=field_name,
                    field_schema=models.PayloadSchemaType.KEYWORD,
                )

    async def _upsert(self, kind: str, record: BaseModel, record_id: str) -> None:
        await self.client.upsert(
            collection_name=self._collection_name(kind),
            points=[
                models.PointStruct(
                    id=self._point_id(record_id),
                    vector=PLACEHOLDER_VECTOR,
                    payload=record.model_dump(mode="json"),
                )
            ],
        )

    async def _retrieve(self, kind: str, record_id: str, model: type[ModelT]) -> ModelT | None:
        results = await self.client.retrieve(
            collection_name=self._collection_name(kind),
            ids=[self._point_id(record_id)],
            with_payload=True,
        )
        if not results or results[0].payload is None:
            return None
        return model.model_validate(results[0].payload)

    async def _scroll(
        self,
        kind: str,
        model: type[ModelT],
        conditions: list[models.FieldCondition] | None = None,
    ) -> list[ModelT]:
        scroll_filter = models.Filter(must=conditions) if conditions else None
        records: list[ModelT] = []
        offset = None
        while True:
            points, offset = await self.client.scroll(
                collection_name=self._collection_name(kind),
                scroll_filter=scroll_filter,
                limit=SCROLL_PAGE_SIZE,
                offset=offset,
                with_payload=True,
                with_vectors=False,
            )
            records.extend(model.model_validate(p.payload) for p in points if p.payload)
            if offset is None:
                return records

    async def _delete_points(self, kind: str, selector: Any) -> None:
        await self.client.delete(
            collection_name=self._collection_name(kind),
            points_selector=selector,
        )

    @staticmethod
    def _match(key: str, value: str) -> models.FieldCondition:
        return models.FieldCondition(key=key, match=models.MatchValue(value=value))

    # Subscriptions

    @store_operation
    async def create_subscription(self, subscription: Subscription) -> Subscription:
        await self._upsert("subscriptions", subscription, subscription.id)
        return subscription

    @store_operation
    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        return await self._retrieve("subscriptions", subscription_id, Subscription)

    @store_operation
    async def list_subscriptions(self) -> list[Subscription]:
        subscriptions = await self._scroll("subscriptions", Subscription)
        subscriptions.sort(key=lambda s: s.created_at, reverse=True)
        return subscriptions

    @store_operation
    async def update_subscription(
        self, subscription_id: str, **changes: Any
    ) -> Subscription | None:
        async with self._lock:
            current = await self._retrieve("subscriptions", subscription_id, Subscription)
            if current is None:
                return None
            updated = apply_changes(current, changes, utc_now())
            await self._upsert("subscriptions", updated, subscription_id)
            return updated

    @store_operation
    async def delete_subscription(self, subscription_id: str) -> bool:
        async with self._lock:
            current = await self._retrieve("subscriptions", subscription_id, Subscription)
            await self._delete_points(
                "dlq",
                models.FilterSelector(
                    filter=models.Filter(must=[self._match("subscription_id", subscription_id)])
                ),
            )
            if current is None:
                return False
            await self._delete_points(
                "subscriptions", models.PointIdsList(points=[self._point_id(subscription_id)])
            )
            return True

    @store_operation
    async def find_active_by_trigger(self, trigger_type: TriggerType) -> list[Subscription]:
        return await self._scroll(
            "subscriptions",
            Subscription,
            [
                self._match("trigger_type", trigger_type.value),
                self._match("status", SubscriptionStatus.ACTIVE.value),
            ],
        )

    @store_operation
    async def record_outcome(
        self,
        subscription_id: str,
        success: bool,
        *,
        weight: float = 0.1,
        at: datetime | None = None,
    ) -> Subscription | None:
        async with self._lock:
            current = await self._retrieve("subscriptions", subscription_id, Subscription)
            if current is None:
                return None
            updated = current.with_outcome(success, weight, at or utc_now())
            await self._upsert("subscriptions", updated, subscription_id)
            return updated

    @store_operation
    async def set_status(
        self, subscription_id: str, status: SubscriptionStatus
    ) -> Subscription | None:
        async with self._lock:
            current = await self._retrieve("subscriptions", subscription_id, Subscription)
            if current is None:
                return None
            updated = current.model_copy(update={"status": status, "updated_at": utc_now()})
            await self._upsert("subscriptions", updated, subscription_id)
            return updated

    # Dead-letter entries

    @store_operation
    async def save_dlq_entry(self, entry: DLQEntry) -> DLQEntry:
        await self._upsert("dlq", entry, entry.id)
        return entry

    @store_operation
    async def get_dlq_entry(self, entry_id: str) -> DLQEntry | None:
        return await self._retrieve("dlq", entry_id, DLQEntry)

    @store_operation
    async def find_dlq_entry(self, idempotency_key: str) -> DLQEntry | None:
        entries = await self._scroll(
            "dlq", DLQEntry, [self._match("idempotency_key", idempotency_key)]
        )
        return entries[0] if entries else None

    @store_operation
    async def list_dlq_entries(
        self, subscription_id: str | None = None, limit: int = 100
    ) -> list[DLQEntry]:
        conditions = (
            [self._match("subscription_id", subscription_id)] if subscription_id else None
        )
        entries = await self._scroll("dlq", DLQEntry, conditions)
        entries.sort(key=lambda e: e.last_attempt_at, reverse=True)
        return entries[:limit]

    @store_operation
    async def delete_dlq_entry(self, entry_id: str) -> bool:
        existing = await self._retrieve("dlq", entry_id, DLQEntry)
        if existing is None:
            return False
        await self._delete_points("dlq", models.PointIdsList(points=[self._point_id(entry_id)]))
        return True

    @store_operation
    async def delete_dlq_entries_for_subscription(self, subscription_id: str) -> int:
        doomed = await self._scroll(
            "dlq", DLQEntry, [self._match("subscription_id", subscription_id)]
        )
        if doomed:
            await self._delete_points(
                "dlq", models.PointIdsList(points=[self._point_id(e.id) for e in doomed])
            )
        return len(doomed)

    @store_operation
    async def count_dlq_entries(self) -> int:
        result = await self.client.count(
            collection_name=self._collection_name("dlq"),
            exact=True,
        )
        return result.count
