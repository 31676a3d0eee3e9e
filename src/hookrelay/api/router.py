"""FastAPI router for the Hookrelay admin and ingestion endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from hookrelay import __version__
from hookrelay.models import DomainEvent
from hookrelay.service import WebhookService

from .schemas import (
    DLQEntryResponse,
    DLQRetryResponse,
    EventRequest,
    EventResponse,
    HealthResponse,
    StatsResponse,
    SubscriptionCreateRequest,
    SubscriptionDeleteResponse,
    SubscriptionResponse,
    SubscriptionUpdateRequest,
)

router = APIRouter()

# Service instance (set by app lifespan)
_service: WebhookService | None = None


def set_service(service: WebhookService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> WebhookService:
    """Dependency to get the WebhookService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[WebhookService, Depends(get_service)]


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    if _service is None:
        return HealthResponse(status="unhealthy", version=__version__)
    return HealthResponse(
        status="healthy", version=__version__, in_flight=_service.dispatcher.in_flight
    )


@router.post(
    "/events",
    response_model=EventResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["events"],
)
async def ingest_event(request: EventRequest, service: ServiceDep) -> EventResponse:
    """Accept a domain event; deliveries continue in the background."""
    fields = request.model_dump(exclude_none=True)
    event = DomainEvent(**fields)
    jobs = await service.emit_event(event)
    return EventResponse(
        event_id=event.id,
        jobs_queued=len(jobs),
        subscription_ids=[job.subscription_id for job in jobs],
    )


@router.get("/webhooks", response_model=list[SubscriptionResponse], tags=["webhooks"])
async def list_webhooks(service: ServiceDep) -> list[SubscriptionResponse]:
    return [SubscriptionResponse.from_subscription(s) for s in await service.list_subscriptions()]


@router.get("/webhooks/stats", response_model=StatsResponse, tags=["webhooks"])
async def webhook_stats(service: ServiceDep) -> StatsResponse:
    stats = await service.stats()
    return StatsResponse(
        total=stats.total,
        active=stats.active,
        total_deliveries=stats.total_deliveries,
        dlq_items=stats.dlq_items,
    )


@router.post(
    "/webhooks",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["webhooks"],
)
async def create_webhook(
    request: SubscriptionCreateRequest, service: ServiceDep
) -> SubscriptionResponse:
    subscription = await service.create_subscription(
        name=request.name,
        url=request.url,
        trigger_type=request.trigger_type,
        signature_mode=request.signature_mode,
        secret=request.secret,
    )
    return SubscriptionResponse.from_subscription(subscription)


@router.get("/webhooks/{subscription_id}", response_model=SubscriptionResponse, tags=["webhooks"])
async def get_webhook(subscription_id: str, service: ServiceDep) -> SubscriptionResponse:
    return SubscriptionResponse.from_subscription(await service.get_subscription(subscription_id))


@router.patch(
    "/webhooks/{subscription_id}", response_model=SubscriptionResponse, tags=["webhooks"]
)
async def update_webhook(
    subscription_id: str, request: SubscriptionUpdateRequest, service: ServiceDep
) -> SubscriptionResponse:
    changes = request.model_dump(exclude_unset=True, exclude_none=True)
    subscription = await service.update_subscription(subscription_id, **changes)
    return SubscriptionResponse.from_subscription(subscription)


@router.delete(
    "/webhooks/{subscription_id}", response_model=SubscriptionDeleteResponse, tags=["webhooks"]
)
async def delete_webhook(subscription_id: str, service: ServiceDep) -> SubscriptionDeleteResponse:
    purged = await service.delete_subscription(subscription_id)
    return SubscriptionDeleteResponse(deleted=True, dlq_purged=purged)


@router.get("/dlq", response_model=list[DLQEntryResponse], tags=["dlq"])
async def list_dlq(
    service: ServiceDep,
    subscription_id: str | None = None,
    limit: Annotated[int | None, Query(ge=1, le=1000)] = None,
) -> list[DLQEntryResponse]:
    entries = await service.list_dlq(subscription_id=subscription_id, limit=limit)
    return [DLQEntryResponse.from_entry(e) for e in entries]


@router.post(
    "/dlq/{entry_id}/retry",
    response_model=DLQRetryResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["dlq"],
)
async def retry_dlq_entry(entry_id: str, service: ServiceDep) -> DLQRetryResponse:
    job = await service.retry_dlq(entry_id)
    return DLQRetryResponse(entry_id=entry_id, idempotency_key=job.idempotency_key)


@router.delete("/dlq/{entry_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["dlq"])
async def delete_dlq_entry(entry_id: str, service: ServiceDep) -> None:
    await service.delete_dlq(entry_id)
