"""Fan-out of domain events to webhook subscriptions.

Each matching subscription gets its own DeliveryJob, run as an asyncio
task so the emitter never waits for delivery. A job loops through
sign -> attempt -> classify -> backoff until it is delivered, dead-lettered
or cancelled.

Concurrency limits:
- A global semaphore caps in-flight HTTP attempts across all jobs.
- A per-subscription semaphore caps jobs in progress for one endpoint.
- One job never has two attempts in flight, and a job with the same
  idempotency key is never run twice at once.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING

from hookrelay.exceptions import ConfigurationError, DeliveryError, RetryExhausted, StorageError
from hookrelay.models import (
    DeliveryJob,
    DomainEvent,
    ErrorKind,
    OutcomeKind,
    Subscription,
    SubscriptionStatus,
    utc_now,
)

from .backoff import BackoffPolicy
from .signing import check_signing_config

if TYPE_CHECKING:
    from hookrelay.storage import SubscriptionRegistry

    from .dlq import DLQManager
    from .executor import DeliveryExecutor

logger = logging.getLogger(__name__)


@dataclass
class DispatchStats:
    """Counters since the dispatcher was created."""

    events: int = 0
    jobs: int = 0
    attempts: int = 0
    delivered: int = 0
    dead_lettered: int = 0
    cancelled: int = 0
    rejected: int = 0


class WebhookDispatcher:
    """Drives delivery jobs from fan-out to a terminal state.

    Example:
        ```python
        dispatcher = WebhookDispatcher(store, executor, dlq)
        jobs = await dispatcher.dispatch(event)  # returns once jobs are queued
        await dispatcher.drain()                 # wait for terminal states
        ```
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        executor: DeliveryExecutor,
        dlq: DLQManager,
        backoff: BackoffPolicy | None = None,
        max_concurrent: int = 20,
        per_subscription_limit: int = 3,
        timeout_seconds: float = 10.0,
        success_rate_weight: float = 0.1,
        failure_threshold: int = 10,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            registry: Source of truth for subscriptions and their health.
            executor: Performs single HTTP attempts.
            dlq: Receives jobs that will not be attempted again.
            backoff: Retry schedule. Defaults to 1s/5s/30s/5m/30m, 5 attempts.
            max_concurrent: Global cap on in-flight attempts.
            per_subscription_limit: Cap on jobs in progress per subscription.
            timeout_seconds: Per-attempt HTTP timeout.
            success_rate_weight: Moving-average weight of each outcome.
            failure_threshold: Consecutive failures before status=error.
        """
        self._registry = registry
        self._executor = executor
        self._dlq = dlq
        self._backoff = backoff or BackoffPolicy()
        self._max_concurrent = max_concurrent
        self._per_subscription_limit = per_subscription_limit
        self._timeout = timeout_seconds
        self._weight = success_rate_weight
        self._failure_threshold = failure_threshold

        self._pool = asyncio.Semaphore(max_concurrent)
        self._subscription_slots: dict[str, asyncio.Semaphore] = {}
        self._outcome_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._halt_signals: dict[str, asyncio.Event] = {}
        self._in_flight: dict[str, asyncio.Task[None]] = {}
        self.stats = DispatchStats()

        dlq.attach(self)

    @property
    def backoff(self) -> BackoffPolicy:
        return self._backoff

    @property
    def in_flight(self) -> int:
        """Jobs queued or running."""
        return len(self._in_flight)

    def is_in_flight(self, idempotency_key: str) -> bool:
        return idempotency_key in self._in_flight

    async def dispatch(self, event: DomainEvent) -> list[DeliveryJob]:
        """Queue one job per active subscription for the event's trigger.

        Returns as soon as jobs are queued. Registry errors propagate: the
        whole cycle has failed and the caller should retry the event.
        Subscriptions with unusable signing configuration are skipped.

        Args:
            event: Domain event to deliver.

        Returns:
            Jobs that were queued.
        """
        subscriptions = await self._registry.find_active_by_trigger(event.trigger_type)
        self.stats.events += 1

        if not subscriptions:
            logger.debug("No subscriptions for %s event %s", event.trigger_type.value, event.id)
            return []

        jobs: list[DeliveryJob] = []
        for subscription in subscriptions:
            try:
                check_signing_config(subscription)
            except ConfigurationError as e:
                self.stats.rejected += 1
                logger.error("Webhook job rejected for %s: %s", subscription.id, e.message)
                continue

            job = DeliveryJob.for_event(event, subscription)
            if self.submit(job, subscription):
                jobs.append(job)

        logger.info(
            "Dispatched %s event %s to %d of %d subscriptions",
            event.trigger_type.value,
            event.id,
            len(jobs),
            len(subscriptions),
        )
        return jobs

    def submit(self, job: DeliveryJob, subscription: Subscription) -> bool:
        """Start a job in the background.

        Returns:
            False if a job with the same idempotency key is already running.
        """
        if job.idempotency_key in self._in_flight:
            logger.info("Job %s already in flight; not resubmitted", job.idempotency_key[:12])
            return False

        task = asyncio.create_task(
            self._run(job, subscription), name=f"webhook-{job.idempotency_key[:12]}"
        )
        self._in_flight[job.idempotency_key] = task
        task.add_done_callback(lambda _: self._in_flight.pop(job.idempotency_key, None))
        self.stats.jobs += 1
        return True

    def halt(self, subscription_id: str) -> None:
        """Cancel pending retries for a subscription.

        Jobs sleeping in a backoff window stop before their next attempt.
        Attempts already on the wire finish, but their outcome cannot
        schedule another retry. Jobs submitted afterwards are unaffected.
        """
        signal = self._halt_signals.pop(subscription_id, None)
        if signal is not None:
            signal.set()
            logger.info("Pending retries halted for %s", subscription_id)

    def forget(self, subscription_id: str) -> None:
        """Halt and drop all per-subscription state, e.g. after deletion."""
        self.halt(subscription_id)
        self._subscription_slots.pop(subscription_id, None)
        self._outcome_locks.pop(subscription_id, None)

    async def drain(self) -> None:
        """Wait until every queued job reaches a terminal state."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)

    async def close(self) -> None:
        """Cancel all jobs and wait for them to unwind."""
        tasks = list(self._in_flight.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._in_flight.clear()

    def _slots_for(self, subscription_id: str) -> asyncio.Semaphore:
        slots = self._subscription_slots.get(subscription_id)
        if slots is None:
            slots = asyncio.Semaphore(self._per_subscription_limit)
            self._subscription_slots[subscription_id] = slots
        return slots

    def _halt_signal_for(self, subscription_id: str) -> asyncio.Event:
        signal = self._halt_signals.get(subscription_id)
        if signal is None:
            signal = asyncio.Event()
            self._halt_signals[subscription_id] = signal
        return signal

    async def _run(self, job: DeliveryJob, subscription: Subscription) -> None:
        """Task body; failures of one job never reach other jobs or the emitter."""
        halt = self._halt_signal_for(job.subscription_id)
        try:
            async with self._slots_for(job.subscription_id):
                await self._drive(job, subscription, halt)
        except Exception:
            logger.exception(
                "Webhook job %s for %s failed unexpectedly",
                job.idempotency_key[:12],
                job.subscription_id,
            )

    async def _drive(
        self, job: DeliveryJob, subscription: Subscription, halt: asyncio.Event
    ) -> None:
        last_error: DeliveryError | None = None

        while True:
            if job.attempt_count > 0:
                # Admin edits apply from the next attempt on
                try:
                    current = await self._registry.get_subscription(job.subscription_id)
                except StorageError as e:
                    await self._on_unreachable(job, subscription, e)
                    return
                if current is None:
                    logger.info(
                        "Subscription %s deleted; dropping job %s",
                        job.subscription_id,
                        job.idempotency_key[:12],
                    )
                    return
                subscription = current

            if halt.is_set() or (not job.manual and not subscription.is_active):
                await self._cancel(job, subscription, last_error)
                return

            job = job.next_attempt()
            try:
                async with self._pool:
                    outcome = await self._executor.attempt(job, subscription, timeout=self._timeout)
            except ConfigurationError as e:
                self.stats.rejected += 1
                logger.error("Webhook job rejected for %s: %s", subscription.id, e.message)
                return
            self.stats.attempts += 1

            if outcome.kind is OutcomeKind.SUCCESS:
                await self._on_delivered(job, subscription, outcome.status_code)
                return

            error = outcome.error
            if error is None:
                raise RuntimeError(f"{outcome.kind.value} outcome carries no error")
            last_error = error
            decision = self._backoff.decide(outcome, job.attempt_count)

            if decision.fatal:
                await self._on_failed(job, subscription, error)
                return
            if decision.delay is None:
                exhausted = RetryExhausted(job.attempt_count, error)
                await self._on_failed(job, subscription, exhausted)
                return

            if halt.is_set():
                await self._cancel(job, subscription, last_error)
                return

            logger.info(
                "Webhook retry %d/%d for %s in %.1fs (%s)",
                job.attempt_count + 1,
                self._backoff.max_attempts,
                subscription.id,
                decision.delay,
                outcome.describe(),
            )
            if await self._sleep_unless_halted(halt, decision.delay):
                await self._cancel(job, subscription, last_error)
                return

    @staticmethod
    async def _sleep_unless_halted(halt: asyncio.Event, delay: float) -> bool:
        """Sleep for ``delay`` seconds; return True if halted meanwhile."""
        try:
            await asyncio.wait_for(halt.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True

    async def _on_delivered(
        self, job: DeliveryJob, subscription: Subscription, status_code: int | None
    ) -> None:
        async with self._outcome_locks[subscription.id]:
            await self._registry.record_outcome(
                subscription.id, True, weight=self._weight, at=utc_now()
            )
        await self._dlq.resolve(job.idempotency_key)
        self.stats.delivered += 1
        logger.info(
            "Webhook delivered: %s to %s (status %s, attempt %d)",
            job.trigger_type.value,
            subscription.url,
            status_code,
            job.attempt_count,
        )

    async def _on_failed(
        self, job: DeliveryJob, subscription: Subscription, error: DeliveryError
    ) -> None:
        async with self._outcome_locks[subscription.id]:
            updated = await self._registry.record_outcome(
                subscription.id, False, weight=self._weight, at=utc_now()
            )
            if updated is None:
                logger.info(
                    "Subscription %s deleted; dropping failed job %s",
                    subscription.id,
                    job.idempotency_key[:12],
                )
                return
            if (
                updated.status is SubscriptionStatus.ACTIVE
                and updated.consecutive_failures >= self._failure_threshold
            ):
                await self._registry.set_status(subscription.id, SubscriptionStatus.ERROR)
                self.halt(subscription.id)
                logger.error(
                    "Subscription %s set to error after %d consecutive failures",
                    subscription.id,
                    updated.consecutive_failures,
                )

        entry = await self._dlq.enqueue(job, error.error_kind, error.message, subscription.name)
        if entry is not None:
            self.stats.dead_lettered += 1

    async def _on_unreachable(
        self, job: DeliveryJob, subscription: Subscription, error: StorageError
    ) -> None:
        """Dead-letter a job whose subscription could not be re-read before a retry.

        Health is not updated. If the DLQ write fails too, the error reaches
        ``_run`` and is logged there.
        """
        logger.error(
            "Registry unavailable before retry of %s for %s: %s",
            job.idempotency_key[:12],
            subscription.id,
            error.message,
        )
        reason = f"Registry unavailable after {job.attempt_count} attempts: {error.message}"
        entry = await self._dlq.enqueue(job, ErrorKind.STORAGE_ERROR, reason, subscription.name)
        if entry is not None:
            self.stats.dead_lettered += 1

    async def _cancel(
        self, job: DeliveryJob, subscription: Subscription, last_error: DeliveryError | None
    ) -> None:
        """Stop a job whose subscription was paused, errored or halted.

        Jobs that already made attempts are dead-lettered as cancelled so an
        administrator can retry them later; health is not updated.
        """
        self.stats.cancelled += 1
        if job.attempt_count == 0:
            logger.info(
                "Webhook job %s cancelled before first attempt (%s)",
                job.idempotency_key[:12],
                subscription.status.value,
            )
            return
        reason = f"Cancelled after {job.attempt_count} attempts"
        if last_error is not None:
            reason = f"{reason}: {last_error.message}"
        await self._dlq.enqueue(job, ErrorKind.CANCELLED, reason, subscription.name)
