"""Tests for downstream publishers."""

import json

import pytest

from hookrelay.events.publisher import (
    InMemoryPublisher,
    PublisherNotReady,
    RedisStreamPublisher,
    create_publisher,
)


@pytest.mark.asyncio
async def test_in_memory_publisher_requires_init():
    publisher = InMemoryPublisher()
    with pytest.raises(PublisherNotReady):
        await publisher.publish("events.orders", {"a": 1}, "k")

    await publisher.init()
    await publisher.publish("events.orders", {"a": 1}, "k")
    await publisher.publish("events.payments", {"b": 2}, "p")
    assert [m.partition_key for m in publisher.on_topic("events.orders")] == ["k"]

    await publisher.shutdown()
    with pytest.raises(PublisherNotReady):
        await publisher.publish("events.orders", {"a": 1}, "k")


class FakeRedis:
    def __init__(self):
        self.entries = []
        self.closed = False

    async def xadd(self, stream, fields, maxlen=None, approximate=False):
        self.entries.append((stream, fields, maxlen))
        return "1-0"

    async def aclose(self):
        self.closed = True


@pytest.mark.asyncio
async def test_redis_stream_publisher_writes_entries():
    publisher = RedisStreamPublisher("redis://unused", stream_prefix="test:", maxlen=10)
    fake = FakeRedis()
    publisher._redis = fake

    await publisher.publish("events.orders", {"order": {"id": 1}}, "shop-1")
    stream, fields, maxlen = fake.entries[0]
    assert stream == "test:events.orders"
    assert fields["partition_key"] == "shop-1"
    assert json.loads(fields["message"]) == {"order": {"id": 1}}
    assert maxlen == 10

    await publisher.shutdown()
    assert fake.closed
    with pytest.raises(PublisherNotReady):
        await publisher.publish("events.orders", {}, "k")


def test_create_publisher():
    assert isinstance(create_publisher("memory", "redis://x", "p:"), InMemoryPublisher)
    assert isinstance(create_publisher("redis", "redis://x", "p:"), RedisStreamPublisher)
    with pytest.raises(ValueError):
        create_publisher("kafka", "redis://x", "p:")


@pytest.mark.asyncio
async def test_in_memory_publisher_keeps_most_recent_messages():
    publisher = InMemoryPublisher(max_messages=2)
    await publisher.init()
    for key in ("a", "b", "c"):
        await publisher.publish("events.orders", {}, key)
    assert [m.partition_key for m in publisher.messages] == ["b", "c"]
