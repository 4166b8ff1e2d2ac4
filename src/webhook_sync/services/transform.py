"""CRM object -> analytics sink record mapping."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from webhook_sync.domain.jobs import collection_name

# CRM properties each collection's mapping reads; also requested on fetch.
COLLECTION_PROPERTIES: dict[str, tuple[str, ...]] = {
    "companies": ("name", "domain", "industry", "founded_year", "hs_lastmodifieddate"),
    "contacts": ("firstname", "lastname", "email", "hs_lastmodifieddate"),
    "deals": ("dealname", "amount", "dealstage", "hs_lastmodifieddate"),
}

# subset of the above a partial property change must carry to skip the fetch
REQUIRED_PROPERTIES: dict[str, tuple[str, ...]] = {
    "companies": ("name", "industry"),
    "contacts": ("firstname", "lastname"),
    "deals": ("dealname", "amount", "dealstage"),
}


def needs_fetch(event_type: str, collection: str, properties: Mapping[str, Any] | None) -> bool:
    if "creation" in event_type.lower() or not properties:
        return True
    return any(field not in properties for field in REQUIRED_PROPERTIES.get(collection, ()))


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number == number else None  # NaN


def _as_int(value: Any) -> int | None:
    number = _as_number(value)
    return int(number) if number is not None else None


def to_sink_record(
    collection: str,
    obj: Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Map a CRM object ``{"id", "properties", "updatedAt"?}`` to one sink record.

    ``$``-prefixed keys are metrics, plain keys are attributes. Properties a
    collection does not map are dropped.
    """
    now = now or datetime.now(timezone.utc)
    props: Mapping[str, Any] = obj.get("properties") or {}
    record: dict[str, Any] = {
        "date": obj.get("updatedAt") or now.isoformat(),
        "objectId": str(obj.get("id", "")),
        "objectType": collection,
        f"${collection}_updated": 1,
    }

    if collection == "companies":
        founded = _as_int(props.get("founded_year"))
        if founded is not None:
            record["$company_age"] = now.year - founded
        record["company_name"] = props.get("name")
        record["industry"] = props.get("industry")
    elif collection == "contacts":
        first = props.get("firstname") or ""
        last = props.get("lastname") or ""
        record["contact_name"] = f"{first} {last}".strip()
    elif collection == "deals":
        amount = _as_number(props.get("amount"))
        if amount is not None:
            record["$deal_amount"] = amount
        record["deal_name"] = props.get("dealname")
        record["deal_stage"] = props.get("dealstage")

    return record


def sink_payload(collection: str, records: list[dict[str, Any]], *, source_prefix: str) -> dict[str, Any]:
    return {"data": records, "source": f"{source_prefix}-{collection}"}
