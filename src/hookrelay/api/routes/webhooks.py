"""Inbound webhook endpoints and the delivery audit/retry surface.

Security contract:
- Signatures are checked against the raw body before anything is recorded
- Verification failures return 401 with no detail about the cause
- Handler failures are still acknowledged with 200; the record carries the error
"""

import logging

from fastapi import APIRouter, Query, Request

from hookrelay.dependencies import Pipeline
from hookrelay.errors.exceptions import ValidationError
from hookrelay.models.delivery import DispatchOutcome
from hookrelay.models.enums import DeliveryStatus, ProviderKind
from hookrelay.webhooks.recorder import MAX_LIST_LIMIT

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def _received(outcome: DispatchOutcome) -> dict:
    return {
        "received": True,
        "delivery_id": outcome.record_id,
        "status": outcome.status.value,
    }


async def _ingest(
    pipeline: Pipeline,
    request: Request,
    provider: str,
    path_topic: str | None = None,
) -> dict:
    body = await request.body()
    outcome = await pipeline.ingest(provider, body, dict(request.headers), path_topic=path_topic)
    return _received(outcome)


@router.post("/shopify")
async def shopify_webhook(request: Request, pipeline: Pipeline) -> dict:
    """Receive Shopify webhooks (topic from X-Shopify-Topic)."""
    return await _ingest(pipeline, request, ProviderKind.SHOPIFY.value)


@router.post("/shopify/{topic:path}")
async def shopify_webhook_with_topic(topic: str, request: Request, pipeline: Pipeline) -> dict:
    """Receive Shopify webhooks with the topic as a path suffix."""
    return await _ingest(pipeline, request, ProviderKind.SHOPIFY.value, path_topic=topic)


@router.post("/woocommerce")
async def woocommerce_webhook(request: Request, pipeline: Pipeline) -> dict:
    """Receive WooCommerce webhooks."""
    return await _ingest(pipeline, request, ProviderKind.WOOCOMMERCE.value)


@router.post("/woocommerce/{event}")
async def woocommerce_webhook_with_event(event: str, request: Request, pipeline: Pipeline) -> dict:
    """Receive WooCommerce webhooks with the event as a path suffix."""
    return await _ingest(pipeline, request, ProviderKind.WOOCOMMERCE.value, path_topic=event)


@router.post("/stripe")
async def stripe_webhook(request: Request, pipeline: Pipeline) -> dict:
    """Receive Stripe webhooks."""
    return await _ingest(pipeline, request, ProviderKind.STRIPE.value)


@router.post("/custom/{provider}")
async def custom_webhook(provider: str, request: Request, pipeline: Pipeline) -> dict:
    """Receive webhooks from custom integrations."""
    if ProviderKind.from_name(provider) is not ProviderKind.CUSTOM:
        raise ValidationError(f"'{provider}' has a dedicated endpoint")
    return await _ingest(pipeline, request, provider)


@router.get("/logs")
@router.get("/logs/{provider}")
async def list_deliveries(
    pipeline: Pipeline,
    provider: str | None = None,
    status: DeliveryStatus | None = None,
    limit: int = Query(50, ge=1, le=MAX_LIST_LIMIT),
    offset: int = Query(0, ge=0),
) -> list[dict]:
    """Newest-first delivery records, optionally filtered by provider and status."""
    records = await pipeline.recorder.list(provider=provider, status=status, limit=limit, offset=offset)
    return [r.model_dump(mode="json") for r in records]


@router.get("/events/{delivery_id}")
async def get_delivery(delivery_id: str, pipeline: Pipeline) -> dict:
    record = await pipeline.recorder.get(delivery_id)
    return record.model_dump(mode="json")


@router.post("/retry/{delivery_id}")
async def retry_delivery(delivery_id: str, pipeline: Pipeline) -> dict:
    """Re-dispatch a failed delivery (bounded by the retry cap)."""
    processed = await pipeline.retry(delivery_id)
    record = await pipeline.recorder.get(delivery_id)
    return {
        "success": True,
        "result": processed,
        "delivery_id": delivery_id,
        "retry_count": record.retry_count,
        "message": "Webhook retry completed" if processed else "Webhook retry failed",
    }
