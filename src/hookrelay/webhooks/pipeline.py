"""Inbound webhook pipeline: verify -> record -> dispatch -> notify.

Each delivery is processed start to finish inside the caller's task; the
pipeline returns only after the record has been finalized.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookrelay.errors.exceptions import ValidationError, VerificationError
from hookrelay.events.publisher import Publisher
from hookrelay.logging_config import bind_delivery_context
from hookrelay.models.delivery import DispatchOutcome
from hookrelay.models.enums import ProviderKind
from hookrelay.webhooks.config import ConfiguredSecretResolver, SecretResolver, WebhookConfig
from hookrelay.webhooks.dispatcher import EventDispatcher
from hookrelay.webhooks.handlers import build_default_registry
from hookrelay.webhooks.notifier import OutcomeNotifier
from hookrelay.webhooks.recorder import EventRecorder
from hookrelay.webhooks.retry import RetryCoordinator
from hookrelay.webhooks.routing import HandlerRegistry
from hookrelay.webhooks.verification import SignatureVerifier

logger = logging.getLogger(__name__)

CUSTOM_TOPIC = "custom"
_CUSTOM_PROVIDER_RE = re.compile(r"^[a-z0-9][a-z0-9_-]{0,62}$")


@dataclass(frozen=True)
class InboundDelivery:
    """Provider metadata pulled out of the request headers."""

    provider: str
    kind: ProviderKind
    topic: str | None
    source_id: str | None
    signature: str | None
    timestamp: str | None = None


def _header(headers: dict[str, str], name: str) -> str | None:
    value = headers.get(name)
    return value if value else None


def extract_delivery(
    provider: str,
    headers: dict[str, str],
    config: WebhookConfig,
    path_topic: str | None = None,
) -> InboundDelivery:
    """Read topic, source and signature for ``provider`` from lowercase headers.

    Raises:
        ValidationError: a header the provider always sends is absent.
    """
    kind = ProviderKind.from_name(provider)
    signature = _header(headers, config.signature_header(kind))

    if kind is ProviderKind.SHOPIFY:
        topic = path_topic or _header(headers, "x-shopify-topic")
        shop = _header(headers, "x-shopify-shop-domain")
        if not topic or not shop:
            raise ValidationError("Missing required Shopify webhook headers")
        return InboundDelivery(provider, kind, topic, shop, signature)

    if kind is ProviderKind.WOOCOMMERCE:
        event = path_topic or _header(headers, "x-wc-webhook-event")
        resource = _header(headers, "x-wc-webhook-resource")
        source = _header(headers, "x-wc-webhook-source")
        if not event or not resource or not source:
            raise ValidationError("Missing required WooCommerce webhook headers")
        return InboundDelivery(provider, kind, f"{resource}.{event}", source, signature)

    if kind is ProviderKind.STRIPE:
        # Topic is the event type inside the signed payload
        return InboundDelivery(provider, kind, None, None, signature)

    if not _CUSTOM_PROVIDER_RE.match(provider):
        raise ValidationError(
            "Invalid custom provider name",
            details={"provider": provider, "pattern": _CUSTOM_PROVIDER_RE.pattern},
        )
    return InboundDelivery(
        provider,
        kind,
        CUSTOM_TOPIC,
        None,
        signature,
        timestamp=_header(headers, "x-webhook-timestamp"),
    )


def _stripe_topic(payload: Any) -> str:
    event_type = payload.get("type") if isinstance(payload, dict) else None
    if not isinstance(event_type, str) or not event_type:
        raise ValidationError("Stripe event is missing 'type'")
    return event_type


class WebhookPipeline:
    def __init__(
        self,
        config: WebhookConfig,
        verifier: SignatureVerifier,
        recorder: EventRecorder,
        dispatcher: EventDispatcher,
        retry_coordinator: RetryCoordinator,
        notifier: OutcomeNotifier,
    ) -> None:
        self.config = config
        self.verifier = verifier
        self.recorder = recorder
        self.dispatcher = dispatcher
        self.retry_coordinator = retry_coordinator
        self.notifier = notifier

    async def ingest(
        self,
        provider: str,
        raw_body: bytes,
        headers: dict[str, str],
        path_topic: str | None = None,
    ) -> DispatchOutcome:
        """Verify, record and dispatch one inbound delivery.

        Raises:
            ValidationError: required provider metadata is missing.
            VerificationError: the signature did not verify; nothing was recorded.
            RecordingError: the datastore could not take the initial record.
        """
        headers = {k.lower(): v for k, v in headers.items()}
        inbound = extract_delivery(provider, headers, self.config, path_topic)
        bind_delivery_context(provider, inbound.topic)

        result = self.verifier.verify(
            inbound.provider,
            inbound.source_id,
            raw_body,
            inbound.signature,
            inbound.timestamp,
        )
        if not result.verified:
            raise VerificationError(provider, result.reason or "not_verified")

        topic = inbound.topic
        if inbound.kind is ProviderKind.STRIPE:
            topic = _stripe_topic(result.payload)

        outcome = await self.dispatcher.dispatch(
            provider=inbound.provider,
            topic=topic,
            payload=result.payload,
            headers=headers,
            signature=inbound.signature,
        )
        logger.info(
            "Webhook %s/%s finalized as %s (id=%s)",
            outcome.provider,
            outcome.topic,
            outcome.status.value,
            outcome.record_id,
        )
        return outcome

    async def retry(self, delivery_id: str) -> bool:
        return await self.retry_coordinator.retry(delivery_id)


def build_pipeline(
    session_factory: async_sessionmaker[AsyncSession],
    config: WebhookConfig,
    publisher: Publisher,
    notifier: OutcomeNotifier | None = None,
    registry: HandlerRegistry | None = None,
    secrets: SecretResolver | None = None,
    verifier: SignatureVerifier | None = None,
) -> WebhookPipeline:
    """Wire the pipeline components together."""
    notifier = notifier or OutcomeNotifier()
    registry = registry if registry is not None else build_default_registry(publisher)
    secrets = secrets or ConfiguredSecretResolver(config)
    verifier = verifier or SignatureVerifier(config, secrets)

    recorder = EventRecorder(session_factory, max_retries=config.max_retries)
    dispatcher = EventDispatcher(recorder, registry, notifier)
    retry_coordinator = RetryCoordinator(recorder, dispatcher)
    return WebhookPipeline(
        config=config,
        verifier=verifier,
        recorder=recorder,
        dispatcher=dispatcher,
        retry_coordinator=retry_coordinator,
        notifier=notifier,
    )
