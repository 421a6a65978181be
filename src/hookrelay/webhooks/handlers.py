"""Business handlers for the built-in providers.

Order and payment events are normalized and published downstream; the
remaining routed topics are acknowledged with an audit log line. A payload
missing the fields a handler needs raises, which finalizes the delivery as
failed.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from hookrelay.events.publisher import Publisher
from hookrelay.models.enums import ProviderKind
from hookrelay.webhooks.routing import HandlerRegistry, WebhookContext

logger = logging.getLogger(__name__)

ORDERS_TOPIC = "events.orders"
PAYMENTS_TOPIC = "events.payments"


class PayloadError(ValueError):
    """The payload lacks a field the handler depends on."""


def _require(payload: Any, key: str) -> Any:
    if not isinstance(payload, dict):
        raise PayloadError(f"expected a JSON object payload, got {type(payload).__name__}")
    value = payload.get(key)
    if value is None or value == "":
        raise PayloadError(f"payload is missing '{key}'")
    return value


def _line_item(item: dict) -> dict:
    return {
        "id": item.get("product_id"),
        "title": item.get("title"),
        "variant_title": item.get("variant_title"),
        "quantity": item.get("quantity"),
        "price": item.get("price"),
    }


def normalize_shopify_order(order: dict, shop_domain: str, event_type: str) -> dict:
    """Shopify order payload -> standardized order event."""
    order_id = _require(order, "id")
    customer = order.get("customer") or {}
    shipping = order.get("shipping_address") or {}
    billing = order.get("billing_address") or {}
    line_items = order.get("line_items") or []

    first_item = None
    if line_items:
        first = line_items[0]
        first_item = {
            **_line_item(first),
            "image_url": first.get("image_url"),
            "product_url": f"https://{shop_domain}/products/{first.get('handle') or first.get('product_id')}",
        }

    return {
        "event_type": event_type,
        "platform": ProviderKind.SHOPIFY.value,
        "source": shop_domain,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source_created_at": order.get("created_at"),
        "order": {
            "id": order_id,
            "order_number": order.get("order_number"),
            "total_price": order.get("total_price"),
            "currency": order.get("currency"),
            "financial_status": order.get("financial_status"),
            "fulfillment_status": order.get("fulfillment_status"),
            "total_items": sum(item.get("quantity") or 0 for item in line_items),
        },
        "customer": {
            "id": customer.get("id"),
            "first_name": customer.get("first_name"),
            "city": shipping.get("city") or billing.get("city"),
            "province": shipping.get("province") or billing.get("province"),
            "country": shipping.get("country") or billing.get("country"),
        },
        "item": first_item,
        "items": [_line_item(item) for item in line_items],
    }


def normalize_woocommerce_order(order: dict, source: str) -> dict:
    """WooCommerce order payload -> standardized order event."""
    order_id = _require(order, "id")
    billing = order.get("billing") or {}
    shipping = order.get("shipping") or {}
    line_items = order.get("line_items") or []
    return {
        "event_type": "order.created",
        "platform": ProviderKind.WOOCOMMERCE.value,
        "source": source,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source_created_at": order.get("date_created"),
        "order": {
            "id": order_id,
            "order_number": order.get("number"),
            "total_price": order.get("total"),
            "currency": order.get("currency"),
            "status": order.get("status"),
            "total_items": sum(item.get("quantity") or 0 for item in line_items),
        },
        "customer": {
            "id": order.get("customer_id"),
            "first_name": billing.get("first_name"),
            "city": shipping.get("city") or billing.get("city"),
            "country": shipping.get("country") or billing.get("country"),
        },
        "items": [
            {
                "id": item.get("product_id"),
                "title": item.get("name"),
                "quantity": item.get("quantity"),
                "price": item.get("price"),
            }
            for item in line_items
        ],
    }


def normalize_stripe_event(event: dict) -> dict:
    """Stripe event envelope -> standardized payment event."""
    event_type = _require(event, "type")
    data = event.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise PayloadError("payload is missing 'data.object'")
    object_id = _require(obj, "id")
    return {
        "event_type": event_type,
        "platform": ProviderKind.STRIPE.value,
        "stripe_event_id": event.get("id"),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "payment": {
            "id": object_id,
            "amount": obj.get("amount") if obj.get("amount") is not None else obj.get("amount_paid"),
            "currency": obj.get("currency"),
            "customer": obj.get("customer"),
            "status": obj.get("status"),
        },
    }


def build_default_registry(publisher: Publisher) -> HandlerRegistry:
    """Routing table for the built-in providers."""
    registry = HandlerRegistry()

    async def shopify_order(ctx: WebhookContext) -> None:
        shop = ctx.headers.get("x-shopify-shop-domain", "")
        event_type = "order.paid" if ctx.topic == "orders/paid" else "order.created"
        message = normalize_shopify_order(ctx.payload, shop, event_type)
        await publisher.publish(ORDERS_TOPIC, message, f"{shop}-{message['order']['id']}")
        logger.info("Published Shopify order %s from %s", message["order"]["id"], shop)

    def shopify_order_updated(ctx: WebhookContext) -> None:
        logger.info("Shopify order updated: %s", _require(ctx.payload, "id"))

    def shopify_app_uninstalled(ctx: WebhookContext) -> None:
        logger.warning("Shopify app uninstalled for shop %s", ctx.headers.get("x-shopify-shop-domain", "unknown"))

    async def woocommerce_order_created(ctx: WebhookContext) -> None:
        source = ctx.headers.get("x-wc-webhook-source", "")
        message = normalize_woocommerce_order(ctx.payload, source)
        await publisher.publish(ORDERS_TOPIC, message, f"{source}-{message['order']['id']}")
        logger.info("Published WooCommerce order %s from %s", message["order"]["id"], source)

    def woocommerce_logged(ctx: WebhookContext) -> None:
        logger.info("WooCommerce %s: %s", ctx.topic, _require(ctx.payload, "id"))

    async def stripe_payment(ctx: WebhookContext) -> None:
        message = normalize_stripe_event(ctx.payload)
        await publisher.publish(PAYMENTS_TOPIC, message, message["payment"]["id"])
        logger.info("Published Stripe %s for %s", ctx.topic, message["payment"]["id"])

    def stripe_customer_created(ctx: WebhookContext) -> None:
        obj = (_require(ctx.payload, "data") or {}).get("object") or {}
        logger.info("Stripe customer created: %s", obj.get("id"))

    registry.register(ProviderKind.SHOPIFY, "orders/create", shopify_order)
    registry.register(ProviderKind.SHOPIFY, "orders/paid", shopify_order)
    registry.register(ProviderKind.SHOPIFY, "orders/updated", shopify_order_updated)
    registry.register(ProviderKind.SHOPIFY, "app/uninstalled", shopify_app_uninstalled)

    registry.register(ProviderKind.WOOCOMMERCE, "order.created", woocommerce_order_created)
    registry.register(ProviderKind.WOOCOMMERCE, "order.updated", woocommerce_logged)
    registry.register(ProviderKind.WOOCOMMERCE, "product.created", woocommerce_logged)
    registry.register(ProviderKind.WOOCOMMERCE, "product.updated", woocommerce_logged)

    registry.register(ProviderKind.STRIPE, "payment_intent.succeeded", stripe_payment)
    registry.register(ProviderKind.STRIPE, "payment_intent.payment_failed", stripe_payment)
    registry.register(ProviderKind.STRIPE, "invoice.payment_succeeded", stripe_payment)
    registry.register(ProviderKind.STRIPE, "customer.created", stripe_customer_created)

    return registry
