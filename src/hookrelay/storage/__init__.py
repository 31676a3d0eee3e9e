"""Persistence for subscriptions and dead-letter entries.

The delivery engine depends only on the WebhookStore protocol. Two
implementations ship with Hookrelay:
    - InMemoryWebhookStore: process-local, for development and tests
    - QdrantWebhookStore: payload-only Qdrant collections
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import SubscriptionRegistry, WebhookStore
from .memory import InMemoryWebhookStore
from .qdrant import QdrantWebhookStore

if TYPE_CHECKING:
    from hookrelay.config import Settings


def create_store(settings: Settings) -> WebhookStore:
    """Build the store selected by ``settings.storage_backend``."""
    if settings.storage_backend == "qdrant":
        return QdrantWebhookStore(
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key,
            prefix=settings.collection_prefix,
        )
    return InMemoryWebhookStore()


__all__ = [
    "InMemoryWebhookStore",
    "QdrantWebhookStore",
    "SubscriptionRegistry",
    "WebhookStore",
    "create_store",
]
