"""String enums for providers, signature schemes and delivery states."""

from enum import StrEnum


class ProviderKind(StrEnum):
    SHOPIFY = "shopify"
    WOOCOMMERCE = "woocommerce"
    STRIPE = "stripe"
    CUSTOM = "custom"

    @classmethod
    def from_name(cls, provider: str) -> "ProviderKind":
        """Map a stored provider name to its kind; unknown names are custom integrations."""
        try:
            return cls(provider.lower())
        except ValueError:
            return cls.CUSTOM


class SignatureScheme(StrEnum):
    BASE64_HMAC = "base64_hmac"
    TIMESTAMPED_HMAC = "timestamped_hmac"
    DETACHED_TIMESTAMP_HMAC = "detached_timestamp_hmac"


class DeliveryStatus(StrEnum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
    RETRYING = "retrying"
