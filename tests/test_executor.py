"""Tests for single delivery attempts."""

from __future__ import annotations

import json

import httpx
import pytest

from conftest import Receiver, make_subscription
from hookrelay.models import (
    DeliveryJob,
    DomainEvent,
    ErrorKind,
    OutcomeKind,
    SignatureMode,
    TriggerType,
)
from hookrelay.webhooks import DeliveryExecutor
from hookrelay.webhooks.signing import verify_hmac_signature, verify_jwt_signature


def _job_for(subscription) -> DeliveryJob:
    event = DomainEvent(
        id="evt_123", trigger_type=TriggerType.CONVERSION, data={"offer_id": "off_1"}
    )
    return DeliveryJob.for_event(event, subscription)


async def _attempt(receiver: Receiver, subscription=None):
    subscription = subscription or make_subscription()
    async with receiver.client() as client:
        executor = DeliveryExecutor(client, timeout_seconds=1.0)
        return await executor.attempt(_job_for(subscription).next_attempt(), subscription)


class TestClassification:
    """Tests for mapping responses to outcomes."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [200, 201, 204, 299])
    async def test_2xx_is_success(self, status: int) -> None:
        outcome = await _attempt(Receiver([status]))

        assert outcome.kind is OutcomeKind.SUCCESS
        assert outcome.status_code == status
        assert outcome.error is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (301, ErrorKind.HTTP_REDIRECT),
            (302, ErrorKind.HTTP_REDIRECT),
            (429, ErrorKind.HTTP_RATE_LIMITED),
            (500, ErrorKind.HTTP_SERVER_ERROR),
            (503, ErrorKind.HTTP_SERVER_ERROR),
        ],
    )
    async def test_retryable_statuses(self, status: int, kind: ErrorKind) -> None:
        outcome = await _attempt(Receiver([status]))

        assert outcome.kind is OutcomeKind.RETRYABLE_FAILURE
        assert outcome.error_kind is kind
        assert outcome.status_code == status

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 403, 404, 410, 422])
    async def test_4xx_is_fatal(self, status: int) -> None:
        outcome = await _attempt(Receiver([status]))

        assert outcome.kind is OutcomeKind.FATAL_FAILURE
        assert outcome.error_kind is ErrorKind.HTTP_CLIENT_ERROR
        assert outcome.describe() == f"HTTP {status}: rejected by receiver"

    @pytest.mark.asyncio
    async def test_redirect_is_not_followed(self) -> None:
        receiver = Receiver([302])
        await _attempt(receiver)

        assert len(receiver.requests) == 1

    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self) -> None:
        outcome = await _attempt(Receiver([httpx.ReadTimeout("slow")]))

        assert outcome.kind is OutcomeKind.RETRYABLE_FAILURE
        assert outcome.error_kind is ErrorKind.NETWORK_ERROR
        assert outcome.describe() == "Request timeout"
        assert outcome.status_code is None

    @pytest.mark.asyncio
    async def test_connection_refused_is_network_error(self) -> None:
        outcome = await _attempt(Receiver([httpx.ConnectError("refused")]))

        assert outcome.kind is OutcomeKind.RETRYABLE_FAILURE
        assert outcome.error_kind is ErrorKind.NETWORK_ERROR
        assert "ConnectError" in outcome.describe()

    @pytest.mark.asyncio
    async def test_elapsed_time_recorded(self) -> None:
        outcome = await _attempt(Receiver([200]))
        assert outcome.elapsed_ms is not None
        assert outcome.elapsed_ms >= 0


class TestRequest:
    """Tests for the outbound request."""

    @pytest.mark.asyncio
    async def test_posts_json_body_to_url(self) -> None:
        receiver = Receiver()
        await _attempt(receiver)

        request = receiver.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://partner.example.com/hooks"
        assert request.headers["Content-Type"] == "application/json"
        body = json.loads(request.content)
        assert body["id"] == "evt_123"
        assert body["type"] == "conversion"
        assert body["data"] == {"offer_id": "off_1"}

    @pytest.mark.asyncio
    async def test_hmac_headers_verify(self) -> None:
        receiver = Receiver()
        subscription = make_subscription()
        await _attempt(receiver, subscription)

        request = receiver.requests[0]
        assert request.headers["X-Idempotency-Key"] == _job_for(subscription).idempotency_key
        assert request.headers["X-Event-Type"] == "conversion"
        assert verify_hmac_signature(
            "s3cr3t",
            request.headers["X-Timestamp"],
            request.content.decode(),
            request.headers["X-Signature"],
        )

    @pytest.mark.asyncio
    async def test_jwt_header_verifies(self) -> None:
        receiver = Receiver()
        subscription = make_subscription(signature_mode=SignatureMode.JWT)
        await _attempt(receiver, subscription)

        request = receiver.requests[0]
        assert verify_jwt_signature(
            "s3cr3t", request.content.decode(), request.headers["X-Signature"]
        )

    @pytest.mark.asyncio
    async def test_unsigned_has_no_signature_header(self) -> None:
        receiver = Receiver()
        await _attempt(receiver, make_subscription(signature_mode=SignatureMode.NONE))

        request = receiver.requests[0]
        assert "X-Signature" not in request.headers
        assert "X-Timestamp" in request.headers
        assert "X-Idempotency-Key" in request.headers


class TestClientOwnership:
    """Tests for HTTP client lifecycle."""

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self) -> None:
        async with Receiver().client() as client:
            executor = DeliveryExecutor(client)
            await executor.close()
            assert not client.is_closed

    @pytest.mark.asyncio
    async def test_close_releases_own_client(self) -> None:
        executor = DeliveryExecutor()
        client = executor.client
        await executor.close()
        assert client.is_closed
