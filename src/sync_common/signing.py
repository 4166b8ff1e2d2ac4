"""HMAC-SHA256 webhook signatures (``v1=<hex digest>``)."""
from __future__ import annotations

import hmac
import json
from hashlib import sha256
from typing import Any

SIGNATURE_HEADER = "X-Webhook-Signature"
SIGNATURE_VERSION = "v1"


def canonical_body(payload: dict[str, Any]) -> bytes:
    """Compact JSON encoding; the signature is computed over exactly these bytes."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def verify(secret: str, body: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(sign(secret, body), signature.strip())
