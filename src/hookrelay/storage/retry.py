"""Retry utilities for store access.

Two layers use tenacity here: the Qdrant store retries transient network
errors on each call, and event ingestion retries a whole dispatch cycle
when the registry is unreachable.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hookrelay.exceptions import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors worth another try against Qdrant; client errors (4xx) are not
TRANSIENT_QDRANT_ERRORS = (
    httpx.ConnectError,
    httpx.TimeoutException,
    ResponseHandlingException,
    UnexpectedResponse,
)


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "Retrying store operation",
        extra={
            "attempt": retry_state.attempt_number,
            "fn_name": getattr(retry_state.fn, "__name__", "unknown"),
            "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
        },
    )


# Decorator for retrying transient Qdrant errors
qdrant_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(TRANSIENT_QDRANT_ERRORS),
    before_sleep=_log_retry,
    reraise=True,
)


def store_operation(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Apply qdrant_retry and surface exhausted transient errors as StorageError."""
    retried = qdrant_retry(fn)

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await retried(*args, **kwargs)
        except TRANSIENT_QDRANT_ERRORS as e:
            raise StorageError(f"{fn.__name__} failed: {e}") from e

    return wrapper


async def with_storage_retry(
    fn: Callable[[], Awaitable[T]],
    attempts: int = 3,
    max_wait: float = 5.0,
) -> T:
    """Run ``fn`` again while it raises StorageError.

    Args:
        fn: Zero-argument coroutine factory.
        attempts: Total attempts before the last StorageError propagates.
        max_wait: Cap on the exponential wait between attempts.
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.2, min=0.1, max=max_wait),
        retry=retry_if_exception_type(StorageError),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            return await fn()
    raise AssertionError("unreachable")  # pragma: no cover
