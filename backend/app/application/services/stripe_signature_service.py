from __future__ import annotations

import hashlib
import hmac
import json
from datetime import UTC, datetime

from app.application.services.webhook_errors import (
    InvalidSignatureError,
    MissingSignatureError,
    WebhookConfigurationError,
)

SIGNATURE_SCHEME = "v1"


def _parse_signature_header(signature_header: str) -> tuple[str | None, list[str]]:
    timestamp = None
    signatures: list[str] = []
    for chunk in signature_header.split(","):
        if "=" not in chunk:
            continue
        key, value = chunk.split("=", 1)
        key = key.strip()
        value = value.strip()
        if key == "t":
            timestamp = value
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)
    return timestamp, signatures


def compute_signature(secret: str, *, timestamp: int | str, payload_bytes: bytes) -> str:
    signed_payload = f"{timestamp}.".encode("utf-8") + payload_bytes
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


class StripeSignatureVerifier:
    """Checks the ``Stripe-Signature`` header against the raw request body.

    The HMAC covers the exact bytes Stripe sent, so the body must never be
    parsed and re-serialized before verification.
    """

    def __init__(self, secret: str | None, *, tolerance_seconds: int = 300) -> None:
        if not secret:
            raise WebhookConfigurationError("Stripe webhook secret is not configured")
        self._secret = secret
        self._tolerance_seconds = max(1, tolerance_seconds)

    def verify(self, payload_bytes: bytes, signature_header: str | None, *, now: datetime | None = None) -> dict:
        if not signature_header or not signature_header.strip():
            raise MissingSignatureError("Missing stripe-signature header")

        timestamp, signatures = _parse_signature_header(signature_header)
        if not timestamp or not signatures:
            raise InvalidSignatureError("Unable to extract timestamp and signatures from header")

        try:
            signed_at = int(timestamp)
        except ValueError as exc:
            raise InvalidSignatureError("Invalid signature timestamp") from exc

        current = int((now or datetime.now(UTC)).timestamp())
        if abs(current - signed_at) > self._tolerance_seconds:
            raise InvalidSignatureError("Timestamp outside the tolerance zone")

        expected = compute_signature(self._secret, timestamp=timestamp, payload_bytes=payload_bytes)
        if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
            raise InvalidSignatureError("No signatures found matching the expected signature for payload")

        try:
            event = json.loads(payload_bytes.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise InvalidSignatureError("Invalid payload: body is not valid JSON") from exc
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise InvalidSignatureError("Invalid payload: not a Stripe event object")
        return event
