"""Shared test fixtures."""

import base64
import hashlib
import hmac
import json
import time
from types import MappingProxyType

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from hookrelay.db.base import Base
# Import all models to register with Base.metadata
import hookrelay.db.models  # noqa: F401
from hookrelay.events.publisher import InMemoryPublisher
from hookrelay.models.enums import ProviderKind
from hookrelay.webhooks.config import ConfiguredSecretResolver, WebhookConfig
from hookrelay.webhooks.notifier import OutcomeNotifier
from hookrelay.webhooks.pipeline import build_pipeline

SHOPIFY_SECRET = "shpss_test_secret"
SHOP_DOMAIN = "demo.myshopify.com"
TENANT_SHOP = "tenant.myshopify.com"
TENANT_SHOP_SECRET = "shpss_tenant_secret"
WOOCOMMERCE_SECRET = "wc_test_secret"
STRIPE_SECRET = "whsec_test_secret"
ACME_SECRET = "acme_test_secret"


class Signer:
    """Produce provider signatures the way each provider computes them."""

    @staticmethod
    def base64_hmac(body: bytes, secret: str) -> str:
        digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
        return base64.b64encode(digest).decode("ascii")

    @staticmethod
    def hex_hmac(body: bytes, secret: str, timestamp: int | str) -> str:
        signed = f"{timestamp}.".encode("utf-8") + body
        return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()

    def stripe_header(self, body: bytes, secret: str = STRIPE_SECRET, timestamp: int | None = None) -> str:
        ts = int(time.time()) if timestamp is None else timestamp
        return f"t={ts},v1={self.hex_hmac(body, secret, ts)}"

    def shopify_headers(self, body: bytes, topic: str = "orders/create", shop: str = SHOP_DOMAIN,
                        secret: str = SHOPIFY_SECRET) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Shopify-Topic": topic,
            "X-Shopify-Shop-Domain": shop,
            "X-Shopify-Hmac-Sha256": self.base64_hmac(body, secret),
        }

    def woocommerce_headers(self, body: bytes, resource: str = "order", event: str = "created",
                            source: str = "https://store.example.com") -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-WC-Webhook-Resource": resource,
            "X-WC-Webhook-Event": event,
            "X-WC-Webhook-Source": source,
            "X-WC-Webhook-Signature": self.base64_hmac(body, WOOCOMMERCE_SECRET),
        }

    def custom_headers(self, body: bytes, secret: str = ACME_SECRET, timestamp: int | None = None) -> dict[str, str]:
        ts = int(time.time()) if timestamp is None else timestamp
        return {
            "Content-Type": "application/json",
            "X-Webhook-Signature": self.hex_hmac(body, secret, ts),
            "X-Webhook-Timestamp": str(ts),
        }


def dumps(payload) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


@pytest.fixture
def signer() -> Signer:
    return Signer()


@pytest.fixture
def webhook_config() -> WebhookConfig:
    return WebhookConfig(
        provider_secrets=MappingProxyType({
            ProviderKind.SHOPIFY: SHOPIFY_SECRET,
            ProviderKind.WOOCOMMERCE: WOOCOMMERCE_SECRET,
            ProviderKind.STRIPE: STRIPE_SECRET,
        }),
        source_secrets=MappingProxyType({
            ProviderKind.SHOPIFY: MappingProxyType({TENANT_SHOP: TENANT_SHOP_SECRET}),
        }),
        tolerance_seconds=300,
        max_retries=3,
    )


@pytest.fixture
def secret_resolver(webhook_config) -> ConfiguredSecretResolver:
    return ConfiguredSecretResolver(webhook_config, environ={"ACME_WEBHOOK_SECRET": ACME_SECRET})


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def publisher():
    pub = InMemoryPublisher()
    await pub.init()
    yield pub
    await pub.shutdown()


@pytest.fixture
def notifier() -> OutcomeNotifier:
    return OutcomeNotifier()


@pytest.fixture
def notifications(notifier) -> list:
    """Every outcome notification emitted during the test."""
    seen: list = []
    notifier.subscribe(seen.append)
    return seen


@pytest.fixture
def pipeline(session_factory, webhook_config, publisher, notifier, secret_resolver):
    return build_pipeline(
        session_factory,
        webhook_config,
        publisher,
        notifier=notifier,
        secrets=secret_resolver,
    )


@pytest.fixture
def app(db_engine, session_factory, publisher, pipeline):
    """Create a test application instance with in-memory DB."""
    from hookrelay.main import create_app

    _app = create_app()
    _app.state.db_engine = db_engine
    _app.state.db_session_factory = session_factory
    _app.state.publisher = publisher
    _app.state.pipeline = pipeline
    return _app


@pytest.fixture
async def client(app):
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
