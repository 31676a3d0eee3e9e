"""Dead-letter queue for deliveries that ran out of attempts."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from hookrelay.exceptions import NotFoundError, ValidationError
from hookrelay.models import DeliveryJob, DLQEntry, ErrorKind, utc_now

from .signing import check_signing_config

if TYPE_CHECKING:
    from hookrelay.storage import WebhookStore

    from .dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)


class DLQManager:
    """Persists exhausted jobs and drives manual retry and delete.

    Entries are keyed by idempotency key: dead-lettering the same job
    again updates its entry instead of adding a second one.
    """

    def __init__(self, store: WebhookStore, list_limit: int = 100) -> None:
        self._store = store
        self._list_limit = list_limit
        self._dispatcher: WebhookDispatcher | None = None
        self._lock = asyncio.Lock()

    def attach(self, dispatcher: WebhookDispatcher) -> None:
        """Set the dispatcher that manual retries are submitted to."""
        self._dispatcher = dispatcher

    async def enqueue(
        self,
        job: DeliveryJob,
        error_kind: ErrorKind,
        last_error: str,
        webhook_name: str,
    ) -> DLQEntry | None:
        """Record a job that will not be attempted again.

        Args:
            job: The job, carrying the attempts made in this run.
            error_kind: Classified reason.
            last_error: Human-readable error of the final attempt.
            webhook_name: Subscription name for display.

        Returns:
            The new or updated entry, or None if the subscription has been
            deleted.
        """
        async with self._lock:
            if await self._store.get_subscription(job.subscription_id) is None:
                logger.info(
                    "Subscription %s deleted; job %s not dead-lettered",
                    job.subscription_id,
                    job.idempotency_key[:12],
                )
                return None
            existing = await self._store.find_dlq_entry(job.idempotency_key)
            if existing is None:
                entry = DLQEntry.from_job(job, webhook_name, error_kind, last_error)
            else:
                entry = existing.model_copy(
                    update={
                        "webhook_name": webhook_name,
                        "error_kind": error_kind,
                        "last_error": last_error,
                        "attempts": existing.attempts + job.attempt_count,
                        "last_attempt_at": utc_now(),
                    }
                )
            await self._store.save_dlq_entry(entry)

        logger.warning(
            "Webhook dead-lettered: %s for %s after %d attempts (%s)",
            entry.id,
            job.subscription_id,
            entry.attempts,
            last_error,
        )
        return entry

    async def resolve(self, idempotency_key: str) -> bool:
        """Remove the entry for a job that has now been delivered."""
        async with self._lock:
            entry = await self._store.find_dlq_entry(idempotency_key)
            if entry is None:
                return False
            await self._store.delete_dlq_entry(entry.id)
        logger.info("Dead-letter entry %s resolved by successful delivery", entry.id)
        return True

    async def retry(self, entry_id: str) -> DeliveryJob:
        """Re-submit an entry's payload as a fresh job.

        The job starts at attempt zero with the entry's idempotency key and
        runs through the normal backoff schedule regardless of the
        subscription's status. The entry stays until that job succeeds.

        Raises:
            NotFoundError: If the entry or its subscription does not exist.
            ConfigurationError: If the subscription cannot be signed for.
            ValidationError: If this entry's job is already in flight.
        """
        if self._dispatcher is None:
            raise RuntimeError("DLQManager is not attached to a dispatcher")

        entry = await self._store.get_dlq_entry(entry_id)
        if entry is None:
            raise NotFoundError("dlq_entry", entry_id)
        subscription = await self._store.get_subscription(entry.subscription_id)
        if subscription is None:
            raise NotFoundError("subscription", entry.subscription_id)
        check_signing_config(subscription)

        job = entry.to_job()
        if not self._dispatcher.submit(job, subscription):
            raise ValidationError("entry_id", f"a delivery for {entry_id} is already in progress")
        logger.info("Manual retry of dead-letter entry %s submitted", entry_id)
        return job

    async def delete(self, entry_id: str) -> None:
        """Permanently remove an entry.

        Raises:
            NotFoundError: If the entry does not exist.
        """
        if not await self._store.delete_dlq_entry(entry_id):
            raise NotFoundError("dlq_entry", entry_id)

    async def get(self, entry_id: str) -> DLQEntry:
        entry = await self._store.get_dlq_entry(entry_id)
        if entry is None:
            raise NotFoundError("dlq_entry", entry_id)
        return entry

    async def list(self, limit: int | None = None) -> list[DLQEntry]:
        return await self._store.list_dlq_entries(limit=limit or self._list_limit)

    async def list_by_subscription(
        self, subscription_id: str, limit: int | None = None
    ) -> list[DLQEntry]:
        return await self._store.list_dlq_entries(
            subscription_id=subscription_id, limit=limit or self._list_limit
        )

    async def remove_subscription(self, subscription_id: str) -> int | None:
        """Delete a subscription together with its entries.

        Holds the enqueue lock, so once this returns no entry can be
        written for the subscription.

        Returns:
            Number of entries purged, or None if the subscription did not exist.
        """
        async with self._lock:
            count = await self._store.delete_dlq_entries_for_subscription(subscription_id)
            if not await self._store.delete_subscription(subscription_id):
                return None
        if count:
            logger.info("Purged %d dead-letter entries for %s", count, subscription_id)
        return count

    async def depth(self) -> int:
        return await self._store.count_dlq_entries()
