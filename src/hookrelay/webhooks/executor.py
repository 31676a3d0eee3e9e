"""Single delivery attempts over HTTP."""

from __future__ import annotations

import logging
import time

import httpx

from hookrelay.exceptions import NetworkError, classify_status
from hookrelay.models import DeliveryJob, DeliveryOutcome, Subscription

from .signing import IDEMPOTENCY_HEADER, signature_headers

logger = logging.getLogger(__name__)


class DeliveryExecutor:
    """Performs one POST per call and classifies the result.

    Holds no per-job state, so one instance serves every concurrent job.
    Signing errors (ConfigurationError) are raised, not classified: they
    are not attempts.

    Example:
        ```python
        async with httpx.AsyncClient() as client:
            executor = DeliveryExecutor(client)
            outcome = await executor.attempt(job, subscription)
        ```
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
        user_agent: str = "hookrelay/0.1.0",
    ) -> None:
        """Initialize the executor.

        Args:
            client: Shared HTTP client. One is created lazily if None.
            timeout_seconds: Default per-attempt timeout.
            user_agent: User-Agent header value.
        """
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout_seconds
        self._user_agent = user_agent

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=False)
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def build_headers(self, job: DeliveryJob, subscription: Subscription) -> dict[str, str]:
        timestamp = str(int(time.time()))
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
            IDEMPOTENCY_HEADER: job.idempotency_key,
            "X-Event-Type": job.trigger_type.value,
        }
        headers.update(signature_headers(subscription, timestamp, job.body))
        return headers

    async def attempt(
        self,
        job: DeliveryJob,
        subscription: Subscription,
        timeout: float | None = None,
    ) -> DeliveryOutcome:
        """Deliver a job once.

        Args:
            job: Job to deliver; its body is sent verbatim.
            subscription: Target endpoint and signing configuration.
            timeout: Per-attempt timeout; defaults to the executor's.

        Returns:
            Classified outcome. Transport errors become retryable
            NetworkError failures.
        """
        headers = self.build_headers(job, subscription)
        started = time.monotonic()

        try:
            response = await self.client.post(
                str(subscription.url),
                content=job.body,
                headers=headers,
                timeout=timeout if timeout is not None else self._timeout,
                follow_redirects=False,
            )
        except httpx.TimeoutException:
            return DeliveryOutcome.failure(
                NetworkError("Request timeout"), elapsed_ms=_elapsed_ms(started)
            )
        except httpx.TransportError as e:
            return DeliveryOutcome.failure(
                NetworkError(f"{type(e).__name__}: {e}"), elapsed_ms=_elapsed_ms(started)
            )

        elapsed = _elapsed_ms(started)
        error = classify_status(response.status_code)
        if error is None:
            logger.debug(
                "Webhook attempt succeeded: %s to %s (status %d, %dms)",
                job.idempotency_key[:12],
                subscription.url,
                response.status_code,
                elapsed,
            )
            return DeliveryOutcome.success(response.status_code, elapsed_ms=elapsed)

        logger.debug(
            "Webhook attempt failed: %s to %s (%s)",
            job.idempotency_key[:12],
            subscription.url,
            error.message,
        )
        return DeliveryOutcome.failure(error, elapsed_ms=elapsed)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
