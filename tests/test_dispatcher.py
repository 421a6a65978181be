"""Tests for the event dispatcher."""

import pytest

from hookrelay.errors.exceptions import RecordingError
from hookrelay.models.enums import DeliveryStatus, ProviderKind
from hookrelay.webhooks.dispatcher import EventDispatcher
from hookrelay.webhooks.notifier import WEBHOOK_FAILED, WEBHOOK_PROCESSED, OutcomeNotifier
from hookrelay.webhooks.recorder import EventRecorder
from hookrelay.webhooks.routing import HandlerRegistry


@pytest.fixture
def recorder(session_factory):
    return EventRecorder(session_factory)


@pytest.fixture
def registry():
    return HandlerRegistry()


@pytest.fixture
def dispatcher(recorder, registry, notifier):
    return EventDispatcher(recorder, registry, notifier)


@pytest.mark.asyncio
async def test_unrouted_topic_is_acknowledged_as_processed(dispatcher, recorder, notifications):
    outcome = await dispatcher.dispatch("shopify", "carts/update", {"id": 1}, {})

    assert outcome.processed
    assert outcome.error is None
    stored = await recorder.get(outcome.record_id)
    assert stored.status == DeliveryStatus.PROCESSED
    assert len(notifications) == 1
    assert notifications[0].event_type == WEBHOOK_PROCESSED
    assert notifications[0].record_id == outcome.record_id


@pytest.mark.asyncio
async def test_handler_receives_context(dispatcher, registry):
    seen = []

    @registry.route(ProviderKind.STRIPE, "customer.created")
    def handler(ctx):
        seen.append(ctx)

    outcome = await dispatcher.dispatch(
        "stripe", "customer.created", {"type": "customer.created"}, {"stripe-signature": "t=1,v1=x"}
    )
    assert len(seen) == 1
    ctx = seen[0]
    assert ctx.kind is ProviderKind.STRIPE
    assert ctx.topic == "customer.created"
    assert ctx.payload == {"type": "customer.created"}
    assert ctx.record_id == outcome.record_id


@pytest.mark.asyncio
async def test_async_handler_is_awaited(dispatcher, registry):
    seen = []

    async def handler(ctx):
        seen.append(ctx.payload["id"])

    registry.register(ProviderKind.SHOPIFY, "orders/create", handler)
    outcome = await dispatcher.dispatch("shopify", "orders/create", {"id": 7}, {})
    assert outcome.processed
    assert seen == [7]


@pytest.mark.asyncio
async def test_handler_failure_is_recorded_not_raised(dispatcher, registry, recorder, notifications):
    def handler(ctx):
        raise RuntimeError("boom")

    registry.register(ProviderKind.SHOPIFY, "orders/create", handler)
    outcome = await dispatcher.dispatch("shopify", "orders/create", {"id": 1}, {})

    assert outcome.status == DeliveryStatus.FAILED
    assert outcome.error == "boom"
    stored = await recorder.get(outcome.record_id)
    assert stored.status == DeliveryStatus.FAILED
    assert stored.last_error == "boom"
    assert len(notifications) == 1
    assert notifications[0].event_type == WEBHOOK_FAILED
    assert notifications[0].error == "boom"


@pytest.mark.asyncio
async def test_handler_failure_without_message(dispatcher, registry, recorder):
    def handler(ctx):
        raise KeyError()

    registry.register(ProviderKind.WOOCOMMERCE, "order.created", handler)
    outcome = await dispatcher.dispatch("woocommerce", "order.created", {}, {})
    assert outcome.error == "Unknown error"
    assert (await recorder.get(outcome.record_id)).last_error == "Unknown error"


@pytest.mark.asyncio
async def test_retry_of_is_recorded(dispatcher, recorder):
    outcome = await dispatcher.dispatch("shopify", "orders/create", {"id": 1}, {}, retry_of="dlv_original")
    assert (await recorder.get(outcome.record_id)).retry_of == "dlv_original"


@pytest.mark.asyncio
async def test_custom_provider_fans_out_on_custom_channel(dispatcher, notifier, notifications):
    custom = []
    notifier.subscribe_custom(custom.append)

    outcome = await dispatcher.dispatch("acme", "custom", {"ticket": 5}, {"x-webhook-timestamp": "1"})

    assert outcome.processed
    assert len(custom) == 1
    assert custom[0].provider == "acme"
    assert custom[0].record_id == outcome.record_id
    assert custom[0].payload == {"ticket": 5}
    assert custom[0].headers == {"x-webhook-timestamp": "1"}
    assert len(notifications) == 1


@pytest.mark.asyncio
async def test_builtin_provider_skips_custom_channel(dispatcher, notifier):
    custom = []
    notifier.subscribe_custom(custom.append)
    await dispatcher.dispatch("stripe", "customer.created", {}, {})
    assert custom == []


@pytest.mark.asyncio
async def test_failing_observer_does_not_change_outcome(dispatcher, notifier, recorder):
    def broken(notification):
        raise RuntimeError("observer down")

    later = []
    notifier.subscribe(broken)
    notifier.subscribe(later.append)

    outcome = await dispatcher.dispatch("shopify", "orders/create", {"id": 1}, {})
    assert outcome.processed
    assert (await recorder.get(outcome.record_id)).status == DeliveryStatus.PROCESSED
    assert len(later) == 1


@pytest.mark.asyncio
async def test_recording_failure_propagates(registry):
    class DownRecorder:
        async def record(self, **kwargs):
            raise RecordingError()

    notifier = OutcomeNotifier()
    seen = []
    notifier.subscribe(seen.append)
    dispatcher = EventDispatcher(DownRecorder(), registry, notifier)

    with pytest.raises(RecordingError):
        await dispatcher.dispatch("shopify", "orders/create", {"id": 1}, {})
    assert seen == []


@pytest.mark.asyncio
async def test_finalization_failure_still_notifies_once(recorder, registry, notifier, notifications):
    class UnfinalizableRecorder:
        def __init__(self, inner):
            self.inner = inner

        async def record(self, **kwargs):
            return await self.inner.record(**kwargs)

        async def transition(self, *args, **kwargs):
            raise RecordingError("Delivery status could not be updated")

    dispatcher = EventDispatcher(UnfinalizableRecorder(recorder), registry, notifier)

    with pytest.raises(RecordingError):
        await dispatcher.dispatch("shopify", "orders/create", {"id": 1}, {})

    assert len(notifications) == 1
    (stuck,) = await recorder.list()
    assert notifications[0].record_id == stuck.id
    assert stuck.status == DeliveryStatus.PENDING
