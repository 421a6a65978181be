"""Downstream event publishing used by business handlers.

The publisher is owned by the application lifespan: ``init()`` on startup,
``shutdown()`` on exit. Handlers receive it by injection.
"""

import json
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class PublisherNotReady(RuntimeError):
    """publish() called before init() or after shutdown()."""


class Publisher(Protocol):
    async def init(self) -> None: ...

    async def shutdown(self) -> None: ...

    async def publish(self, topic: str, message: dict[str, Any], partition_key: str) -> None: ...


@dataclass(frozen=True)
class PublishedMessage:
    topic: str
    message: dict[str, Any]
    partition_key: str
    published_at: datetime


class InMemoryPublisher:
    """Keeps the most recent published messages in memory (local mode and tests)."""

    def __init__(self, max_messages: int = 10_000) -> None:
        self.messages: deque[PublishedMessage] = deque(maxlen=max_messages)
        self._ready = False

    async def init(self) -> None:
        self._ready = True

    async def shutdown(self) -> None:
        self._ready = False

    async def publish(self, topic: str, message: dict[str, Any], partition_key: str) -> None:
        if not self._ready:
            raise PublisherNotReady("publisher is not initialized")
        self.messages.append(
            PublishedMessage(
                topic=topic,
                message=message,
                partition_key=partition_key,
                published_at=datetime.now(timezone.utc),
            )
        )
        logger.debug("Published to %s (key=%s)", topic, partition_key)

    def on_topic(self, topic: str) -> list[PublishedMessage]:
        return [m for m in self.messages if m.topic == topic]


class RedisStreamPublisher:
    """Append messages to Redis streams, one stream per topic.

    Each entry carries ``partition_key`` and the JSON-encoded ``message``.
    """

    def __init__(self, redis_url: str, stream_prefix: str = "hookrelay:", maxlen: int | None = 100_000) -> None:
        self.redis_url = redis_url
        self.stream_prefix = stream_prefix
        self.maxlen = maxlen
        self._redis = None

    async def init(self) -> None:
        if self._redis is not None:
            return
        import redis.asyncio as aioredis

        self._redis = aioredis.from_url(self.redis_url, decode_responses=True)
        await self._redis.ping()
        logger.info("Redis stream publisher connected")

    async def shutdown(self) -> None:
        if self._redis is None:
            return
        await self._redis.aclose()
        self._redis = None
        logger.info("Redis stream publisher closed")

    async def publish(self, topic: str, message: dict[str, Any], partition_key: str) -> None:
        if self._redis is None:
            raise PublisherNotReady("publisher is not initialized")
        fields = {
            "partition_key": partition_key,
            "message": json.dumps(message, separators=(",", ":"), default=str),
        }
        await self._redis.xadd(
            f"{self.stream_prefix}{topic}",
            fields,
            maxlen=self.maxlen,
            approximate=True,
        )
        logger.debug("Published to stream %s%s (key=%s)", self.stream_prefix, topic, partition_key)


def create_publisher(backend: str, redis_url: str, stream_prefix: str) -> Publisher:
    if backend == "memory":
        return InMemoryPublisher()
    if backend == "redis":
        return RedisStreamPublisher(redis_url, stream_prefix=stream_prefix)
    raise ValueError(f"Unknown publisher backend: {backend}")
