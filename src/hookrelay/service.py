"""Hookrelay service layer.

WebhookService wires the store, executor, dispatcher and DLQ manager
together. It is the boundary where domain events enter the pipeline and
where the admin console's operations land.

Example:
    ```python
    from hookrelay.service import WebhookService

    async with WebhookService.create() as relay:
        await relay.create_subscription(
            name="Partner conversions",
            url="https://partner.example.com/hooks",
            trigger_type="conversion",
            signature_mode="hmac-sha256",
            secret="s3cr3t",
        )
        await relay.emit("conversion", {"offer_id": "off_1", "payout": 4.2})
    ```
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
import pydantic

from hookrelay.config import Settings
from hookrelay.exceptions import NotFoundError, ValidationError
from hookrelay.logging import get_logger
from hookrelay.models import (
    USER_SETTABLE_STATUSES,
    DeliveryJob,
    DLQEntry,
    DomainEvent,
    SignatureMode,
    Subscription,
    SubscriptionStatus,
    TriggerType,
)
from hookrelay.storage import WebhookStore, create_store
from hookrelay.storage.retry import with_storage_retry
from hookrelay.webhooks import BackoffPolicy, DeliveryExecutor, DLQManager, WebhookDispatcher

logger = get_logger(__name__)

EDITABLE_FIELDS = frozenset({"name", "url", "trigger_type", "signature_mode", "secret", "status"})


@dataclass(frozen=True)
class WebhookStats:
    """Aggregate numbers shown on the admin dashboard."""

    total: int
    active: int
    total_deliveries: int
    dlq_items: int


def _validation_error(e: pydantic.ValidationError) -> ValidationError:
    first = e.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "subscription"
    return ValidationError(field, first.get("msg", str(e)))


@dataclass
class WebhookService:
    """High-level entry point for event ingestion and administration.

    Uses dependency injection for the store and executor so tests and
    embedding applications can supply their own.
    """

    store: WebhookStore
    executor: DeliveryExecutor
    dlq: DLQManager
    dispatcher: WebhookDispatcher
    settings: Settings

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        store: WebhookStore | None = None,
        client: httpx.AsyncClient | None = None,
        backoff: BackoffPolicy | None = None,
    ) -> WebhookService:
        """Create a WebhookService with default dependencies.

        Args:
            settings: Optional settings. Uses environment if None.
            store: Optional store. Built from settings.storage_backend if None.
            client: Optional HTTP client for outbound deliveries.
            backoff: Optional retry policy. Built from settings if None.

        Returns:
            Configured WebhookService instance.
        """
        if settings is None:
            settings = Settings()
        if store is None:
            store = create_store(settings)
        if backoff is None:
            backoff = BackoffPolicy(
                schedule=settings.retry_schedule_seconds,
                max_attempts=settings.max_attempts,
            )

        executor = DeliveryExecutor(
            client=client,
            timeout_seconds=settings.delivery_timeout_seconds,
            user_agent=settings.user_agent,
        )
        dlq = DLQManager(store, list_limit=settings.dlq_list_limit)
        dispatcher = WebhookDispatcher(
            store,
            executor,
            dlq,
            backoff=backoff,
            max_concurrent=settings.max_concurrent_deliveries,
            per_subscription_limit=settings.per_subscription_concurrency,
            timeout_seconds=settings.delivery_timeout_seconds,
            success_rate_weight=settings.success_rate_weight,
            failure_threshold=settings.failure_threshold,
        )
        return cls(
            store=store,
            executor=executor,
            dlq=dlq,
            dispatcher=dispatcher,
            settings=settings,
        )

    async def initialize(self) -> None:
        await self.store.initialize()

    async def close(self) -> None:
        """Cancel in-flight jobs and release the store and HTTP client."""
        await self.dispatcher.close()
        await self.executor.close()
        await self.store.close()

    async def __aenter__(self) -> WebhookService:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # Event ingestion

    async def emit(
        self,
        trigger_type: TriggerType | str,
        data: dict[str, Any] | None = None,
        event_id: str | None = None,
        occurred_at: datetime | None = None,
    ) -> list[DeliveryJob]:
        """Build a domain event and queue deliveries for it.

        Returns once jobs are queued; delivery continues in the background.

        Raises:
            ValidationError: If the trigger type is unknown.
            StorageError: If the registry stayed unreachable after retries.
        """
        try:
            trigger = TriggerType(trigger_type)
        except ValueError as e:
            raise ValidationError("trigger_type", f"unknown trigger type {trigger_type!r}") from e

        fields: dict[str, Any] = {"trigger_type": trigger, "data": data or {}}
        if event_id is not None:
            fields["id"] = event_id
        if occurred_at is not None:
            fields["occurred_at"] = occurred_at
        return await self.emit_event(DomainEvent(**fields))

    async def emit_event(self, event: DomainEvent) -> list[DeliveryJob]:
        """Dispatch an event, retrying the cycle while the registry is down."""
        jobs = await with_storage_retry(
            lambda: self.dispatcher.dispatch(event),
            attempts=self.settings.ingest_retry_attempts,
        )
        logger.debug(
            "Event ingested",
            event_id=event.id,
            trigger_type=event.trigger_type.value,
            jobs=len(jobs),
        )
        return jobs

    # Subscriptions

    async def create_subscription(
        self,
        name: str,
        url: str,
        trigger_type: TriggerType | str,
        signature_mode: SignatureMode | str = SignatureMode.NONE,
        secret: str | None = None,
    ) -> Subscription:
        """Register a new webhook. New subscriptions start active."""
        try:
            subscription = Subscription(
                name=name,
                url=url,
                trigger_type=trigger_type,
                signature_mode=signature_mode,
                secret=secret,
            )
        except pydantic.ValidationError as e:
            raise _validation_error(e) from e

        await self.store.create_subscription(subscription)
        logger.info(
            "Subscription created",
            subscription_id=subscription.id,
            trigger_type=subscription.trigger_type.value,
            signature_mode=subscription.signature_mode.value,
        )
        return subscription

    async def get_subscription(self, subscription_id: str) -> Subscription:
        subscription = await self.store.get_subscription(subscription_id)
        if subscription is None:
            raise NotFoundError("subscription", subscription_id)
        return subscription

    async def list_subscriptions(self) -> list[Subscription]:
        return await self.store.list_subscriptions()

    async def update_subscription(self, subscription_id: str, **changes: Any) -> Subscription:
        """Apply an administrator's edit.

        Only active and paused may be set as status; error is reserved for
        the dispatcher. A status change away from active cancels pending
        retries immediately; other edits leave running jobs alone.

        Raises:
            NotFoundError: If the subscription does not exist.
            ValidationError: For unknown fields, forbidden statuses or
                invalid values.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(sorted(unknown)[0], "field cannot be edited")

        changes = {k: v for k, v in changes.items() if v is not None}
        if "status" in changes:
            try:
                status = SubscriptionStatus(changes["status"])
            except ValueError as e:
                raise ValidationError("status", f"unknown status {changes['status']!r}") from e
            if status not in USER_SETTABLE_STATUSES:
                raise ValidationError("status", "only active or paused can be set directly")
            changes["status"] = status

        previous = await self.get_subscription(subscription_id)
        try:
            updated = await self.store.update_subscription(subscription_id, **changes)
        except pydantic.ValidationError as e:
            raise _validation_error(e) from e
        if updated is None:
            raise NotFoundError("subscription", subscription_id)

        if updated.status is not previous.status and not updated.is_active:
            self.dispatcher.halt(subscription_id)
        logger.info(
            "Subscription updated",
            subscription_id=subscription_id,
            fields=sorted(changes),
            status=updated.status.value,
        )
        return updated

    async def delete_subscription(self, subscription_id: str) -> int:
        """Delete a subscription, its DLQ entries and its pending retries.

        Returns:
            Number of DLQ entries purged.
        """
        purged = await self.dlq.remove_subscription(subscription_id)
        if purged is None:
            raise NotFoundError("subscription", subscription_id)
        self.dispatcher.forget(subscription_id)
        logger.info("Subscription deleted", subscription_id=subscription_id, dlq_purged=purged)
        return purged

    # Dead-letter queue

    async def list_dlq(
        self, subscription_id: str | None = None, limit: int | None = None
    ) -> list[DLQEntry]:
        if subscription_id is not None:
            return await self.dlq.list_by_subscription(subscription_id, limit=limit)
        return await self.dlq.list(limit=limit)

    async def retry_dlq(self, entry_id: str) -> DeliveryJob:
        return await self.dlq.retry(entry_id)

    async def delete_dlq(self, entry_id: str) -> None:
        await self.dlq.delete(entry_id)
        logger.info("Dead-letter entry deleted", entry_id=entry_id)

    async def stats(self) -> WebhookStats:
        subscriptions = await self.store.list_subscriptions()
        return WebhookStats(
            total=len(subscriptions),
            active=sum(1 for s in subscriptions if s.is_active),
            total_deliveries=sum(s.total_deliveries for s in subscriptions),
            dlq_items=await self.dlq.depth(),
        )
