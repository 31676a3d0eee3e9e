"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
import pytest
import pytest_asyncio

from hookrelay.config import Settings
from hookrelay.models import SignatureMode, Subscription, TriggerType
from hookrelay.service import WebhookService
from hookrelay.storage import InMemoryWebhookStore
from hookrelay.webhooks import BackoffPolicy, DeliveryExecutor, DLQManager, WebhookDispatcher

# Short delays so full retry sequences finish in milliseconds
FAST_SCHEDULE = (0.01, 0.01, 0.01, 0.01, 0.01)


class Receiver:
    """Scriptable webhook endpoint backed by httpx.MockTransport.

    Responses are consumed from ``script`` in order; each item is a status
    code or an exception to raise. Once the script runs out, ``default`` is
    returned. Setting ``gate`` holds every request until the event is set.
    """

    def __init__(self, script: list[int | Exception] | None = None, default: int = 200) -> None:
        self.script = list(script or [])
        self.default = default
        self.requests: list[httpx.Request] = []
        self.times: list[float] = []
        self.gate: asyncio.Event | None = None
        self.active = 0
        self.max_active = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.times.append(time.monotonic())
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            item = self.script.pop(0) if self.script else self.default
            if isinstance(item, Exception):
                raise item
            return httpx.Response(item, text="ok" if 200 <= item < 300 else "nope")
        finally:
            self.active -= 1

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def keys(self) -> list[str]:
        return [r.headers["X-Idempotency-Key"] for r in self.requests]


async def wait_until(predicate: Callable[[], bool], rounds: int = 200) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


def make_subscription(**overrides: Any) -> Subscription:
    fields: dict[str, Any] = {
        "name": "Partner conversions",
        "url": "https://partner.example.com/hooks",
        "trigger_type": TriggerType.CONVERSION,
        "signature_mode": SignatureMode.HMAC_SHA256,
        "secret": "s3cr3t",
    }
    fields.update(overrides)
    return Subscription(**fields)


@pytest.fixture
def receiver() -> Receiver:
    return Receiver()


@pytest.fixture
def store() -> InMemoryWebhookStore:
    return InMemoryWebhookStore()


@pytest.fixture
def fast_backoff() -> BackoffPolicy:
    return BackoffPolicy(schedule=FAST_SCHEDULE, max_attempts=5)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        env="test",
        retry_schedule_seconds=list(FAST_SCHEDULE),
        delivery_timeout_seconds=1.0,
        max_concurrent_deliveries=10,
        per_subscription_concurrency=3,
    )


@pytest_asyncio.fixture
async def dispatcher(
    store: InMemoryWebhookStore, receiver: Receiver, fast_backoff: BackoffPolicy
) -> AsyncIterator[WebhookDispatcher]:
    client = receiver.client()
    dispatcher = WebhookDispatcher(
        store,
        DeliveryExecutor(client, timeout_seconds=1.0),
        DLQManager(store),
        backoff=fast_backoff,
        max_concurrent=10,
        per_subscription_limit=3,
    )
    yield dispatcher
    await dispatcher.close()
    await client.aclose()


@pytest_asyncio.fixture
async def service(
    store: InMemoryWebhookStore, receiver: Receiver, test_settings: Settings
) -> AsyncIterator[WebhookService]:
    client = receiver.client()
    relay = WebhookService.create(test_settings, store=store, client=client)
    async with relay:
        yield relay
    await client.aclose()
