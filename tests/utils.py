from __future__ import annotations

from typing import Any

from sync_common.signing import canonical_body, sign

SYNC_SECRET = "test-sync-secret"


def signed(payload: dict[str, Any], secret: str = SYNC_SECRET) -> tuple[bytes, dict[str, str]]:
    body = canonical_body(payload)
    return body, {"Content-Type": "application/json", "X-Webhook-Signature": sign(secret, body)}


def envelope(event: dict[str, Any], subscription_id: str = "sub-1") -> dict[str, Any]:
    return {"subscriptionId": subscription_id, "event": event, "timestamp": 1700000000000}


def company_event(object_id: str = "1001", **overrides: Any) -> dict[str, Any]:
    event = {
        "eventId": f"evt-{object_id}",
        "eventType": "company.propertyChange",
        "objectType": "COMPANY",
        "objectId": object_id,
        "properties": {"name": "Acme", "industry": "Software"},
    }
    event.update(overrides)
    return event
