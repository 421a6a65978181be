"""Webhook event dispatcher: records, routes and finalizes one delivery.

Contract:
- Every dispatch creates exactly one record and emits exactly one outcome
  notification
- Unrouted (provider, topic) pairs are acknowledged and finalize as processed
- Handler exceptions are captured into the record and the notification and
  never re-raised
- A failure to create the record propagates with no notification; a failure
  to finalize it propagates after the notification, leaving it pending
"""

import inspect
import logging
from typing import Any

from hookrelay.logging_config import bind_delivery_context
from hookrelay.models.delivery import DispatchOutcome
from hookrelay.models.enums import DeliveryStatus, ProviderKind
from hookrelay.webhooks.notifier import CustomDelivery, OutcomeNotification, OutcomeNotifier
from hookrelay.webhooks.recorder import EventRecorder
from hookrelay.webhooks.routing import HandlerRegistry, WebhookContext

logger = logging.getLogger(__name__)

UNKNOWN_ERROR = "Unknown error"


def _error_message(exc: BaseException) -> str:
    return str(exc) or UNKNOWN_ERROR


class EventDispatcher:
    def __init__(
        self,
        recorder: EventRecorder,
        registry: HandlerRegistry,
        notifier: OutcomeNotifier,
    ) -> None:
        self.recorder = recorder
        self.registry = registry
        self.notifier = notifier

    async def dispatch(
        self,
        provider: str,
        topic: str,
        payload: Any,
        headers: dict[str, str],
        signature: str | None = None,
        retry_of: str | None = None,
    ) -> DispatchOutcome:
        record = await self.recorder.record(
            provider=provider,
            topic=topic,
            payload=payload,
            headers=headers,
            signature=signature,
            retry_of=retry_of,
        )
        bind_delivery_context(provider, topic, record.id)

        error: str | None = None
        try:
            await self._invoke(record.id, provider, topic, payload, headers)
        except Exception as exc:
            error = _error_message(exc)
            logger.warning("Handler for %s/%s failed: %s", provider, topic, error, exc_info=True)

        status = DeliveryStatus.PROCESSED if error is None else DeliveryStatus.FAILED
        try:
            await self.recorder.transition(record.id, status, error)
        finally:
            # Observers hear about the attempt even if the record stays pending
            await self.notifier.notify(
                OutcomeNotification(provider=provider, topic=topic, record_id=record.id, error=error)
            )
        return DispatchOutcome(
            record_id=record.id,
            provider=provider,
            topic=topic,
            status=status,
            error=error,
        )

    async def _invoke(
        self,
        record_id: str,
        provider: str,
        topic: str,
        payload: Any,
        headers: dict[str, str],
    ) -> None:
        if ProviderKind.from_name(provider) is ProviderKind.CUSTOM:
            await self.notifier.notify_custom(
                CustomDelivery(provider=provider, record_id=record_id, payload=payload, headers=dict(headers))
            )

        handler = self.registry.lookup(provider, topic)
        if handler is None:
            logger.info("No handler for %s/%s, acknowledging", provider, topic)
            return

        context = WebhookContext(
            provider=provider,
            topic=topic,
            payload=payload,
            headers=dict(headers),
            record_id=record_id,
        )
        result = handler(context)
        if inspect.isawaitable(result):
            await result
