"""In-process fan-out of dispatch outcomes.

Two channels:
- outcomes: one notification per dispatch finalization (processed or failed)
- custom: full payload/headers of custom-provider deliveries

Observers run synchronously in registration order. An observer that raises is
logged and skipped; the remaining observers still run.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Union

logger = logging.getLogger(__name__)

WEBHOOK_PROCESSED = "webhook.processed"
WEBHOOK_FAILED = "webhook.failed"
WEBHOOK_CUSTOM = "webhook.custom"


@dataclass(frozen=True)
class OutcomeNotification:
    """Summary of one finalized dispatch."""

    provider: str
    topic: str
    record_id: str
    error: str | None = None

    @property
    def event_type(self) -> str:
        return WEBHOOK_FAILED if self.error is not None else WEBHOOK_PROCESSED


@dataclass(frozen=True)
class CustomDelivery:
    """A custom-provider delivery, passed through whole for bespoke handling."""

    provider: str
    record_id: str
    payload: Any
    headers: dict[str, str] = field(default_factory=dict)


Observer = Callable[[Any], Union[None, Awaitable[None]]]


class _Channel:
    def __init__(self, name: str) -> None:
        self.name = name
        self._observers: list[Observer] = []

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    async def publish(self, event: Any) -> int:
        """Deliver to every observer; return how many completed without error."""
        delivered = 0
        for observer in list(self._observers):
            try:
                result = observer(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception:
                logger.exception("Observer %r failed on channel %s", observer, self.name)
        return delivered

    def __len__(self) -> int:
        return len(self._observers)


class OutcomeNotifier:
    """Registry of outcome and custom-delivery observers."""

    def __init__(self) -> None:
        self._outcomes = _Channel(WEBHOOK_PROCESSED)
        self._custom = _Channel(WEBHOOK_CUSTOM)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Observe every processed/failed notification. Returns an unsubscribe callable."""
        return self._outcomes.subscribe(observer)

    def subscribe_custom(self, observer: Observer) -> Callable[[], None]:
        """Observe custom-provider deliveries."""
        return self._custom.subscribe(observer)

    async def notify(self, notification: OutcomeNotification) -> int:
        logger.info(
            "%s provider=%s topic=%s id=%s",
            notification.event_type,
            notification.provider,
            notification.topic,
            notification.record_id,
        )
        return await self._outcomes.publish(notification)

    async def notify_custom(self, delivery: CustomDelivery) -> int:
        return await self._custom.publish(delivery)

    @property
    def observer_count(self) -> int:
        return len(self._outcomes)

    @property
    def custom_observer_count(self) -> int:
        return len(self._custom)
