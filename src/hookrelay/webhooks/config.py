"""Provider configuration and secret resolution.

A ``WebhookConfig`` is built once at startup from ``Settings`` and handed to
the verifier and dispatcher. It is frozen; nothing mutates it at runtime.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Protocol

from hookrelay.config import Settings
from hookrelay.models.enums import ProviderKind, SignatureScheme

MAX_RETRIES = 3
DEFAULT_TOLERANCE_SECONDS = 300

PROVIDER_SCHEMES: Mapping[ProviderKind, SignatureScheme] = MappingProxyType({
    ProviderKind.SHOPIFY: SignatureScheme.BASE64_HMAC,
    ProviderKind.WOOCOMMERCE: SignatureScheme.BASE64_HMAC,
    ProviderKind.STRIPE: SignatureScheme.TIMESTAMPED_HMAC,
    ProviderKind.CUSTOM: SignatureScheme.DETACHED_TIMESTAMP_HMAC,
})

# Provider -> header carrying the signature (lowercase)
SIGNATURE_HEADERS: Mapping[ProviderKind, str] = MappingProxyType({
    ProviderKind.SHOPIFY: "x-shopify-hmac-sha256",
    ProviderKind.WOOCOMMERCE: "x-wc-webhook-signature",
    ProviderKind.STRIPE: "stripe-signature",
    ProviderKind.CUSTOM: "x-webhook-signature",
})


def _frozen(mapping: Mapping[str, str] | None) -> Mapping[str, str]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class WebhookConfig:
    """Immutable provider configuration shared by the pipeline components."""

    provider_secrets: Mapping[ProviderKind, str] = field(default_factory=lambda: _frozen({}))
    source_secrets: Mapping[ProviderKind, Mapping[str, str]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS
    max_retries: int = MAX_RETRIES

    @classmethod
    def from_settings(cls, settings: Settings) -> "WebhookConfig":
        provider_secrets = {
            ProviderKind.SHOPIFY: settings.shopify_webhook_secret,
            ProviderKind.WOOCOMMERCE: settings.woocommerce_webhook_secret,
            ProviderKind.STRIPE: settings.stripe_webhook_secret,
        }
        source_secrets = {
            ProviderKind.SHOPIFY: _frozen(settings.shopify_shop_secrets),
            ProviderKind.WOOCOMMERCE: _frozen(settings.woocommerce_source_secrets),
        }
        return cls(
            provider_secrets=MappingProxyType(provider_secrets),
            source_secrets=MappingProxyType(source_secrets),
            tolerance_seconds=settings.signature_tolerance_seconds,
            max_retries=settings.max_retries,
        )

    def scheme_for(self, kind: ProviderKind) -> SignatureScheme:
        return PROVIDER_SCHEMES[kind]

    def signature_header(self, kind: ProviderKind) -> str:
        return SIGNATURE_HEADERS[kind]


class SecretResolver(Protocol):
    """Resolve the shared secret for a provider and (optional) source id."""

    def get_secret(self, provider: str, source_id: str | None) -> str | None: ...


def custom_secret_env_var(provider: str) -> str:
    """``acme-crm`` -> ``ACME_CRM_WEBHOOK_SECRET``."""
    return f"{provider.upper().replace('-', '_')}_WEBHOOK_SECRET"


class ConfiguredSecretResolver:
    """Secrets from ``WebhookConfig``; custom providers from the environment.

    Per-source secrets take precedence over the provider-wide secret. Empty
    strings count as missing.
    """

    def __init__(self, config: WebhookConfig, environ: Mapping[str, str] | None = None) -> None:
        self._config = config
        self._environ = os.environ if environ is None else environ

    def get_secret(self, provider: str, source_id: str | None) -> str | None:
        kind = ProviderKind.from_name(provider)
        if kind is ProviderKind.CUSTOM:
            return self._environ.get(custom_secret_env_var(provider)) or None

        if source_id:
            per_source = self._config.source_secrets.get(kind, {})
            secret = per_source.get(source_id)
            if secret:
                return secret
        return self._config.provider_secrets.get(kind) or None
