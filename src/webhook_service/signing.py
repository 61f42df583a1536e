"""HMAC-SHA256 signatures over the canonical webhook body.

Receivers recompute the signature from the raw request body, so the bytes
signed here are exactly the bytes POSTed by the dispatcher.
"""
from __future__ import annotations

import hmac
import json
from hashlib import sha256

from webhook_service.domain.webhooks import DeliveryPayload

SIGNATURE_PREFIX = "sha256="


def canonical_body(payload: DeliveryPayload) -> bytes:
    """Compact UTF-8 JSON in the fixed wire field order, absent fields omitted."""
    return json.dumps(payload.to_wire(), separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def _signature(secret: str, body_bytes: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body_bytes, sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def sign(payload: DeliveryPayload, secret: str) -> str:
    return _signature(secret, canonical_body(payload))


def sign_body(body_bytes: bytes, secret: str) -> str:
    return _signature(secret, body_bytes)


def verify_signature(secret: str, body_bytes: bytes, header_value: str | None) -> bool:
    """Receiver-side check of an ``X-Oblivion-Signature`` header."""
    if not header_value or not header_value.startswith(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(_signature(secret, body_bytes), header_value)
