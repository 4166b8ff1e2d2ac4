"""Inbound change notices as seen by the consumer."""
from __future__ import annotations

from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from sync_common.exceptions import ValidationError


class InboundEvent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    event_id: str | None = Field(default=None, alias="eventId")
    event_type: str = Field(alias="eventType")
    object_type: str = Field(alias="objectType")
    object_id: str = Field(alias="objectId")
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
    def _optional_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def from_body(cls, body: Any) -> "InboundEvent":
        """Unwrap a broker envelope ``{"subscriptionId", "event", "timestamp"}``.

        Producers posting directly send the event itself, so a body without an
        ``event`` object is validated as-is.
        """
        if not isinstance(body, Mapping):
            raise ValidationError("Invalid webhook payload: expected an object")
        event = body.get("event")
        data = event if isinstance(event, Mapping) else body
        try:
            return cls.model_validate(dict(data))
        except PydanticValidationError as exc:
            fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
            raise ValidationError(f"Invalid webhook payload: {', '.join(fields) or 'malformed'}") from exc
