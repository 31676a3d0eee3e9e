"""Store behavior shared by the in-memory and Qdrant backends."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from qdrant_client import AsyncQdrantClient

from conftest import make_subscription
from hookrelay.config import Settings
from hookrelay.exceptions import StorageError
from hookrelay.models import (
    DeliveryJob,
    DLQEntry,
    DomainEvent,
    ErrorKind,
    SignatureMode,
    SubscriptionStatus,
    TriggerType,
)
from hookrelay.storage import (
    InMemoryWebhookStore,
    QdrantWebhookStore,
    SubscriptionRegistry,
    WebhookStore,
    create_store,
)


@pytest_asyncio.fixture(params=["memory", "qdrant"])
async def backend(request: pytest.FixtureRequest) -> AsyncIterator[WebhookStore]:
    if request.param == "memory":
        yield InMemoryWebhookStore()
        return

    client = AsyncQdrantClient(location=":memory:")
    store = QdrantWebhookStore(prefix="test", client=client)
    await store.initialize()
    yield store
    await store.close()
    await client.close()


def _entry(subscription_id: str, minutes: int = 0, error: str = "boom") -> DLQEntry:
    job = DeliveryJob.for_event(
        DomainEvent(trigger_type=TriggerType.CONVERSION, data={"n": minutes}),
        make_subscription(id=subscription_id),
    )
    entry = DLQEntry.from_job(job.next_attempt(), "Partner", ErrorKind.NETWORK_ERROR, error)
    at = datetime(2024, 1, 1, tzinfo=UTC) + timedelta(minutes=minutes)
    return entry.model_copy(update={"last_attempt_at": at})


class TestSubscriptions:
    """Subscription CRUD and registry queries."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, backend: WebhookStore) -> None:
        subscription = await backend.create_subscription(make_subscription())

        fetched = await backend.get_subscription(subscription.id)

        assert fetched == subscription
        assert await backend.get_subscription("whk_missing") is None

    @pytest.mark.asyncio
    async def test_list(self, backend: WebhookStore) -> None:
        first = await backend.create_subscription(make_subscription(name="first"))
        second = await backend.create_subscription(make_subscription(name="second"))

        listed = await backend.list_subscriptions()

        assert {s.id for s in listed} == {first.id, second.id}

    @pytest.mark.asyncio
    async def test_find_active_by_trigger(self, backend: WebhookStore) -> None:
        match = await backend.create_subscription(make_subscription())
        await backend.create_subscription(make_subscription(trigger_type=TriggerType.FRAUD))
        await backend.create_subscription(make_subscription(status=SubscriptionStatus.PAUSED))
        await backend.create_subscription(make_subscription(status=SubscriptionStatus.ERROR))

        found = await backend.find_active_by_trigger(TriggerType.CONVERSION)

        assert [s.id for s in found] == [match.id]

    @pytest.mark.asyncio
    async def test_update(self, backend: WebhookStore) -> None:
        subscription = await backend.create_subscription(make_subscription())

        updated = await backend.update_subscription(
            subscription.id, name="Renamed", signature_mode=SignatureMode.NONE
        )

        assert updated.name == "Renamed"
        assert updated.secret is None
        assert updated.updated_at >= subscription.updated_at
        assert await backend.get_subscription(subscription.id) == updated
        assert await backend.update_subscription("whk_missing", name="x") is None

    @pytest.mark.asyncio
    async def test_update_revalidates(self, backend: WebhookStore) -> None:
        subscription = await backend.create_subscription(
            make_subscription(signature_mode=SignatureMode.NONE)
        )

        with pytest.raises(ValueError):
            await backend.update_subscription(
                subscription.id, signature_mode=SignatureMode.HMAC_SHA256
            )

    @pytest.mark.asyncio
    async def test_record_outcome(self, backend: WebhookStore) -> None:
        subscription = await backend.create_subscription(make_subscription())

        await backend.record_outcome(subscription.id, False, weight=0.1)
        updated = await backend.record_outcome(subscription.id, False, weight=0.1)

        assert updated.consecutive_failures == 2
        assert updated.success_rate == pytest.approx(81.0)
        assert (await backend.get_subscription(subscription.id)).failed_deliveries == 2
        assert await backend.record_outcome("whk_missing", True) is None

    @pytest.mark.asyncio
    async def test_set_status(self, backend: WebhookStore) -> None:
        subscription = await backend.create_subscription(make_subscription())

        updated = await backend.set_status(subscription.id, SubscriptionStatus.ERROR)

        assert updated.status is SubscriptionStatus.ERROR
        assert await backend.find_active_by_trigger(TriggerType.CONVERSION) == []

    @pytest.mark.asyncio
    async def test_delete_cascades_to_dlq(self, backend: WebhookStore) -> None:
        subscription = await backend.create_subscription(make_subscription())
        other = await backend.create_subscription(make_subscription(name="other"))
        await backend.save_dlq_entry(_entry(subscription.id))
        await backend.save_dlq_entry(_entry(other.id))

        assert await backend.delete_subscription(subscription.id)

        assert await backend.get_subscription(subscription.id) is None
        remaining = await backend.list_dlq_entries()
        assert [e.subscription_id for e in remaining] == [other.id]
        assert not await backend.delete_subscription(subscription.id)


class TestDeadLetters:
    """Dead-letter persistence."""

    @pytest.mark.asyncio
    async def test_save_get_find(self, backend: WebhookStore) -> None:
        entry = await backend.save_dlq_entry(_entry("whk_a"))

        assert await backend.get_dlq_entry(entry.id) == entry
        assert await backend.find_dlq_entry(entry.idempotency_key) == entry
        assert await backend.find_dlq_entry("unknown") is None

    @pytest.mark.asyncio
    async def test_save_overwrites_same_id(self, backend: WebhookStore) -> None:
        entry = await backend.save_dlq_entry(_entry("whk_a"))

        await backend.save_dlq_entry(entry.model_copy(update={"attempts": 7}))

        assert (await backend.get_dlq_entry(entry.id)).attempts == 7
        assert await backend.count_dlq_entries() == 1

    @pytest.mark.asyncio
    async def test_list_order_filter_and_limit(self, backend: WebhookStore) -> None:
        for minutes in (5, 1, 9):
            await backend.save_dlq_entry(_entry("whk_a", minutes, error=f"a{minutes}"))
        await backend.save_dlq_entry(_entry("whk_b", 3, error="b3"))

        everything = await backend.list_dlq_entries()
        assert [e.last_error for e in everything] == ["a9", "a5", "b3", "a1"]

        limited = await backend.list_dlq_entries(limit=2)
        assert [e.last_error for e in limited] == ["a9", "a5"]

        only_b = await backend.list_dlq_entries(subscription_id="whk_b")
        assert [e.last_error for e in only_b] == ["b3"]

    @pytest.mark.asyncio
    async def test_delete_entry(self, backend: WebhookStore) -> None:
        entry = await backend.save_dlq_entry(_entry("whk_a"))

        assert await backend.delete_dlq_entry(entry.id)
        assert not await backend.delete_dlq_entry(entry.id)
        assert await backend.count_dlq_entries() == 0

    @pytest.mark.asyncio
    async def test_delete_for_subscription(self, backend: WebhookStore) -> None:
        await backend.save_dlq_entry(_entry("whk_a", 1))
        await backend.save_dlq_entry(_entry("whk_a", 2))
        await backend.save_dlq_entry(_entry("whk_b", 3))

        assert await backend.delete_dlq_entries_for_subscription("whk_a") == 2
        assert await backend.delete_dlq_entries_for_subscription("whk_a") == 0
        assert await backend.count_dlq_entries() == 1


class TestQdrantStore:
    """Qdrant-specific behavior."""

    def test_point_id_is_stable_uuid(self):
        point_id = QdrantWebhookStore._point_id("whk_abc")
        assert point_id == QdrantWebhookStore._point_id("whk_abc")
        assert point_id != QdrantWebhookStore._point_id("whk_abd")
        assert [len(part) for part in point_id.split("-")] == [8, 4, 4, 4, 12]

    def test_client_required_before_initialize(self):
        with pytest.raises(RuntimeError):
            QdrantWebhookStore(url="http://localhost:6333").client

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self) -> None:
        client = AsyncQdrantClient(location=":memory:")
        store = QdrantWebhookStore(prefix="idem", client=client)
        await store.initialize()
        await store.initialize()

        names = {c.name for c in (await client.get_collections()).collections}
        assert {"idem_subscriptions", "idem_dlq"} <= names
        await client.close()

    @pytest.mark.asyncio
    async def test_transient_errors_become_storage_error(self) -> None:
        client = AsyncMock()
        client.retrieve.side_effect = httpx.ConnectError("connection refused")
        store = QdrantWebhookStore(client=client)

        with pytest.raises(StorageError):
            await store.get_subscription("whk_1")
        assert client.retrieve.await_count == 3


class TestCreateStore:
    """Tests for backend selection."""

    def test_memory_default(self):
        store = create_store(Settings())
        assert isinstance(store, InMemoryWebhookStore)
        assert isinstance(store, WebhookStore)
        assert isinstance(store, SubscriptionRegistry)

    def test_qdrant(self):
        store = create_store(Settings(storage_backend="qdrant", collection_prefix="relay"))
        assert isinstance(store, QdrantWebhookStore)
        assert store._collection_name("dlq") == "relay_dlq"
