"""Handler registry keyed by ``(ProviderKind, topic)``."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Union

from hookrelay.models.enums import ProviderKind


@dataclass(frozen=True)
class WebhookContext:
    """What a business handler receives for one delivery."""

    provider: str
    topic: str
    payload: Any
    headers: dict[str, str] = field(default_factory=dict)
    record_id: str | None = None

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.from_name(self.provider)


Handler = Callable[[WebhookContext], Union[None, Awaitable[None]]]


class HandlerRegistry:
    """Static routing table.

    Built once while wiring the application; lookups of an unregistered key
    return None, which the dispatcher treats as an acknowledged no-op.
    """

    def __init__(self) -> None:
        self._routes: dict[tuple[ProviderKind, str], Handler] = {}

    def register(self, kind: ProviderKind, topic: str, handler: Handler) -> None:
        key = (ProviderKind(kind), topic)
        if key in self._routes:
            raise ValueError(f"Handler already registered for {kind}/{topic}")
        self._routes[key] = handler

    def route(self, kind: ProviderKind, topic: str) -> Callable[[Handler], Handler]:
        """Decorator form of ``register``."""

        def _decorator(handler: Handler) -> Handler:
            self.register(kind, topic, handler)
            return handler

        return _decorator

    def lookup(self, provider: str, topic: str) -> Handler | None:
        return self._routes.get((ProviderKind.from_name(provider), topic))

    def topics(self, kind: ProviderKind) -> list[str]:
        return sorted(topic for (k, topic) in self._routes if k == kind)

    def __contains__(self, key: tuple[ProviderKind, str]) -> bool:
        return key in self._routes

    def __len__(self) -> int:
        return len(self._routes)
