"""Bounded manual retry of recorded deliveries.

A retry bumps ``retry_count`` on the original record, moves it to
``retrying`` and re-runs the dispatch from the stored payload and headers. The
re-run is recorded as a new delivery chained to the original via ``retry_of``.
Signatures are not re-verified: the stored record was verified on arrival.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from hookrelay.models.delivery import DeliveryRecord
from hookrelay.models.enums import ProviderKind
from hookrelay.webhooks.dispatcher import EventDispatcher
from hookrelay.webhooks.recorder import EventRecorder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplayRequest:
    """Dispatcher arguments rebuilt from a stored delivery."""

    provider: str
    topic: str
    payload: Any
    headers: dict[str, str] = field(default_factory=dict)
    signature: str | None = None
    source_id: str | None = None


def reconstruct(record: DeliveryRecord) -> ReplayRequest:
    """Rebuild the original dispatch call for a stored delivery."""
    headers = dict(record.headers or {})
    kind = ProviderKind.from_name(record.provider)

    if kind is ProviderKind.SHOPIFY:
        return ReplayRequest(
            provider=record.provider,
            topic=record.topic,
            payload=record.payload,
            headers=headers,
            signature=record.signature,
            source_id=headers.get("x-shopify-shop-domain", ""),
        )
    if kind is ProviderKind.WOOCOMMERCE:
        return ReplayRequest(
            provider=record.provider,
            topic=record.topic,
            payload=record.payload,
            headers=headers,
            signature=record.signature,
            source_id=headers.get("x-wc-webhook-source", ""),
        )
    if kind is ProviderKind.STRIPE:
        payload = record.payload
        topic = payload.get("type", record.topic) if isinstance(payload, dict) else record.topic
        return ReplayRequest(
            provider=record.provider,
            topic=topic,
            payload=payload,
            headers=headers,
            signature=record.signature,
        )
    return ReplayRequest(
        provider=record.provider,
        topic=record.topic,
        payload=record.payload,
        headers=headers,
        signature=record.signature,
    )


class RetryCoordinator:
    def __init__(self, recorder: EventRecorder, dispatcher: EventDispatcher) -> None:
        self.recorder = recorder
        self.dispatcher = dispatcher

    @property
    def max_retries(self) -> int:
        return self.recorder.max_retries

    async def retry(self, delivery_id: str) -> bool:
        """Re-dispatch a failed delivery.

        Returns:
            True if the new attempt finalized as processed, False if it failed.

        Raises:
            NotFoundError: unknown delivery id.
            RetryExhaustedError: retry_count already at the cap; nothing changes.
            InvalidTransitionError: the delivery is pending or processed.
        """
        record = await self.recorder.mark_retrying(delivery_id)
        replay = reconstruct(record)

        logger.info(
            "Retrying delivery %s (%s/%s source=%s), attempt %d of %d",
            delivery_id,
            replay.provider,
            replay.topic,
            replay.source_id or "-",
            record.retry_count,
            self.max_retries,
        )
        outcome = await self.dispatcher.dispatch(
            provider=replay.provider,
            topic=replay.topic,
            payload=replay.payload,
            headers=replay.headers,
            signature=replay.signature,
            retry_of=delivery_id,
        )
        return outcome.processed
