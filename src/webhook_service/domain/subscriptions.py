"""Subscription domain primitives."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Subscription(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    url: str
    events: list[str] = Field(default_factory=list)
    secret: str
    active: bool = True
    created_at: datetime = Field(alias="createdAt")
    last_notified: datetime | None = Field(default=None, alias="lastNotified")
    success_count: int = Field(default=0, alias="successCount")
    error_count: int = Field(default=0, alias="errorCount")

    def to_public(self) -> dict[str, Any]:
        """API representation; the shared secret never leaves the broker."""
        return self.model_dump(mode="json", by_alias=True, exclude={"secret"})
