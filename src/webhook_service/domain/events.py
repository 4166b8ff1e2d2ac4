"""Change events and per-event delivery reports."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Mapping
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from sync_common.exceptions import DeliveryError, ValidationError


def _now_ms() -> int:
    return int(time.time() * 1000)


class ChangeEvent(BaseModel):
    """A CRM mutation notice. Immutable once accepted.

    Producer specific extras (``portalId``, ``changeSource``...) are kept and
    forwarded to subscribers untouched.
    """

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    event_id: str = Field(default_factory=lambda: str(uuid4()), alias="eventId")
    event_type: str = Field(alias="eventType")
    object_type: str = Field(alias="objectType")
    object_id: str = Field(alias="objectId")
    occurred_at: int | str = Field(default_factory=_now_ms, alias="occurredAt")
    properties: dict[str, Any] | None = None

    @field_validator("event_type", "object_type", "object_id", mode="before")
    @classmethod
    def _require_text(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("must be a string")
        if isinstance(value, int):
            value = str(value)
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("must not be blank")
        return value

    @field_validator("event_id", mode="before")
    @classmethod
    def _event_id_text(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return str(uuid4())
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @classmethod
    def coerce(cls, data: "ChangeEvent | Mapping[str, Any]") -> "ChangeEvent":
        """Validate a raw payload, raising :class:`ValidationError` when malformed."""
        if isinstance(data, ChangeEvent):
            return data
        if not isinstance(data, Mapping):
            raise ValidationError("Invalid webhook payload: expected an object")
        try:
            return cls.model_validate(dict(data))
        except PydanticValidationError as exc:
            fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
            raise ValidationError(f"Invalid webhook payload: {', '.join(fields) or 'malformed'}") from exc

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of a single delivery attempt to one subscriber."""

    subscription_id: str
    status: int | None = None
    error: DeliveryError | None = None
    duration_ms: float = 0.0

    @property
    def delivered(self) -> bool:
        return self.error is None


@dataclass
class DeliveryReport:
    event_id: str
    outcomes: list[DeliveryOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.delivered)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.delivered)

    def to_response(self) -> dict[str, Any]:
        return {
            "message": "Webhook processed",
            "eventId": self.event_id,
            "notificationsSent": self.succeeded,
            "notificationsFailed": self.failed,
        }
