"""Webhook signature verification: constant-time HMAC for each scheme.

Security contract:
- All comparisons use hmac.compare_digest() on bytes (constant-time)
- Signatures are computed over the raw request body, never a re-serialization
- Missing secret -> rejected (fail-closed)
- Timestamped schemes check the replay window before comparing digests
- Nothing raises across verify(); every failure is a rejected result
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from hookrelay.models.enums import ProviderKind, SignatureScheme
from hookrelay.webhooks.config import SecretResolver, WebhookConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a signature check, identical in shape for every scheme."""

    verified: bool
    payload: Any = None
    reason: str | None = None

    @classmethod
    def accepted(cls, payload: Any) -> VerificationResult:
        return cls(verified=True, payload=payload)

    @classmethod
    def rejected(cls, reason: str) -> VerificationResult:
        return cls(verified=False, reason=reason)

    def __bool__(self) -> bool:
        return self.verified


def _hmac_sha256(secret: str, message: bytes) -> hmac.HMAC:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256)


def _safe_equal(expected: str, provided: str) -> bool:
    """Timing-safe comparison that treats any length or encoding mismatch as unequal."""
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def _accept(raw_body: bytes) -> VerificationResult:
    try:
        payload = json.loads(raw_body)
    except ValueError:
        return VerificationResult.rejected("malformed_payload")
    return VerificationResult.accepted(payload)


def parse_signature_header(header: str) -> dict[str, list[str]]:
    """Parse ``t=123,v1=abc,v1=def`` into ``{"t": ["123"], "v1": ["abc", "def"]}``.

    Elements without ``=`` are ignored.
    """
    parts: dict[str, list[str]] = {}
    for item in header.split(","):
        kv = item.strip().split("=", 1)
        if len(kv) == 2:
            key, value = kv[0].strip(), kv[1].strip()
            parts.setdefault(key, []).append(value)
    return parts


def verify_base64_hmac(raw_body: bytes, signature: str | None, secret: str | None) -> VerificationResult:
    """Scheme used by Shopify and WooCommerce.

    The header carries base64(HMAC-SHA256(secret, raw_body)).
    """
    if not secret:
        return VerificationResult.rejected("missing_secret")
    if not signature:
        return VerificationResult.rejected("missing_signature")

    computed = base64.b64encode(_hmac_sha256(secret, raw_body).digest()).decode("ascii")
    if not _safe_equal(computed, signature):
        return VerificationResult.rejected("signature_mismatch")

    return _accept(raw_body)


def _verify_timestamped(
    raw_body: bytes,
    timestamp_str: str,
    candidates: list[str],
    secret: str,
    tolerance: int,
    now: float,
) -> VerificationResult:
    try:
        timestamp = int(timestamp_str)
    except (ValueError, TypeError):
        return VerificationResult.rejected("malformed_timestamp")

    # Replay protection runs before any digest work
    if abs(now - timestamp) > tolerance:
        return VerificationResult.rejected("timestamp_out_of_tolerance")

    signed_payload = f"{timestamp_str}.".encode("utf-8") + raw_body
    expected = _hmac_sha256(secret, signed_payload).hexdigest()

    if not any(_safe_equal(expected, sig) for sig in candidates):
        return VerificationResult.rejected("signature_mismatch")

    return _accept(raw_body)


def verify_timestamped_hmac(
    raw_body: bytes,
    signature_header: str | None,
    secret: str | None,
    tolerance: int,
    now: float,
) -> VerificationResult:
    """Stripe-style header: ``t=<unix>,v1=<hex>[,v1=<hex>...]``.

    Any ``v1`` entry may match; ``v0`` and unknown keys are ignored.
    """
    if not secret:
        return VerificationResult.rejected("missing_secret")
    if not signature_header:
        return VerificationResult.rejected("missing_signature")

    parts = parse_signature_header(signature_header)
    timestamps = parts.get("t") or []
    v1_sigs = [sig for sig in parts.get("v1", []) if sig]
    if len(timestamps) != 1 or not timestamps[0] or not v1_sigs:
        return VerificationResult.rejected("malformed_signature_header")

    return _verify_timestamped(raw_body, timestamps[0], v1_sigs, secret, tolerance, now)


def verify_detached_timestamp_hmac(
    raw_body: bytes,
    signature: str | None,
    timestamp: str | None,
    secret: str | None,
    tolerance: int,
    now: float,
) -> VerificationResult:
    """Custom integrations: hex digest header plus a separate timestamp header."""
    if not secret:
        return VerificationResult.rejected("missing_secret")
    if not signature:
        return VerificationResult.rejected("missing_signature")
    if not timestamp:
        return VerificationResult.rejected("missing_timestamp")

    return _verify_timestamped(raw_body, timestamp.strip(), [signature], secret, tolerance, now)


class SignatureVerifier:
    """Select and run the signature scheme for a provider."""

    def __init__(
        self,
        config: WebhookConfig,
        secrets: SecretResolver,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.secrets = secrets
        self.clock = clock

    def verify(
        self,
        provider: str,
        source_id: str | None,
        raw_body: bytes,
        signature_header: str | None,
        auxiliary: str | None = None,
    ) -> VerificationResult:
        """Verify a delivery.

        Args:
            provider: Provider name ("shopify", "stripe", or a custom name)
            source_id: Shop domain / store URL for multi-tenant providers
            raw_body: Exact request body bytes
            signature_header: Value of the provider's signature header
            auxiliary: Out-of-band timestamp for custom providers

        Returns:
            An accepted result carrying the parsed JSON payload, or a
            rejected result with a reason code.
        """
        try:
            result = self._verify(provider, source_id, raw_body, signature_header, auxiliary)
        except Exception:
            logger.exception("Signature verification fault for provider %s", provider)
            result = VerificationResult.rejected("verification_error")

        if not result.verified:
            logger.warning("Webhook signature rejected: provider=%s reason=%s", provider, result.reason)
        return result

    def _verify(
        self,
        provider: str,
        source_id: str | None,
        raw_body: bytes,
        signature_header: str | None,
        auxiliary: str | None,
    ) -> VerificationResult:
        kind = ProviderKind.from_name(provider)
        scheme = self.config.scheme_for(kind)
        secret = self.secrets.get_secret(provider, source_id)
        if not secret:
            logger.warning("No webhook secret configured for %s (source=%s)", provider, source_id)

        if scheme is SignatureScheme.BASE64_HMAC:
            return verify_base64_hmac(raw_body, signature_header, secret)
        if scheme is SignatureScheme.TIMESTAMPED_HMAC:
            return verify_timestamped_hmac(
                raw_body, signature_header, secret, self.config.tolerance_seconds, self.clock()
            )
        if scheme is SignatureScheme.DETACHED_TIMESTAMP_HMAC:
            return verify_detached_timestamp_hmac(
                raw_body, signature_header, auxiliary, secret, self.config.tolerance_seconds, self.clock()
            )
        return VerificationResult.rejected("unsupported_scheme")
