"""Delivery jobs and their state machine.

::

    pending(visible_at) -> processing -> done
                                      -> pending(visible_at = now + backoff)
                                      -> failed

A job is claimable only once ``visible_at`` has passed. ``attempt_count`` is
incremented when a worker claims the job and never exceeds ``max_attempts``.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from sync_common.exceptions import InvalidJobTransitionError


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


JOB_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.DONE, JobStatus.PENDING, JobStatus.FAILED},
    JobStatus.DONE: set(),
    # operator retry
    JobStatus.FAILED: {JobStatus.PENDING},
}


def validate_job_transition(current: JobStatus, new: JobStatus) -> None:
    if new not in JOB_TRANSITIONS.get(current, set()):
        raise InvalidJobTransitionError(f"Invalid job status transition: {current.value} → {new.value}")


def collection_name(object_type: str) -> str:
    """``company`` / ``COMPANY`` / ``companies`` -> ``companies``."""
    name = object_type.strip().lower()
    if name.endswith("s"):
        return name
    if name.endswith("y") and len(name) > 1 and name[-2] not in "aeiou":
        return name[:-1] + "ies"
    return name + "s"


def coalesce_key(object_type: str, object_id: str) -> str:
    return f"{collection_name(object_type)}:{object_id}"


def is_creation(event_type: str) -> bool:
    return "creation" in event_type.lower()


class DeliveryJob(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    event_id: str | None = None
    event_type: str
    object_type: str
    object_id: str
    properties: dict[str, Any] | None = None
    coalesce_key: str
    status: JobStatus = JobStatus.PENDING
    attempt_count: int = 0
    max_attempts: int = 3
    enqueued_at: datetime
    visible_at: datetime
    locked_at: datetime | None = None
    last_error: str | None = None
    coalesced_count: int = 0
    updated_at: datetime

    @classmethod
    def new(
        cls,
        *,
        event_type: str,
        object_type: str,
        object_id: str,
        properties: dict[str, Any] | None,
        now: datetime,
        delay: timedelta,
        max_attempts: int,
        event_id: str | None = None,
    ) -> "DeliveryJob":
        return cls(
            event_id=event_id,
            event_type=event_type,
            object_type=object_type,
            object_id=object_id,
            properties=properties,
            coalesce_key=coalesce_key(object_type, object_id),
            max_attempts=max_attempts,
            enqueued_at=now,
            visible_at=now + delay,
            updated_at=now,
        )

    @property
    def attempts_left(self) -> bool:
        return self.attempt_count < self.max_attempts

    def merged_with(self, newer: "DeliveryJob", now: datetime) -> "DeliveryJob":
        """Fold a newer event for the same object into this pending job.

        Property changes are merged with newer values winning. When either side
        carries no properties, or the earlier event was a creation, the merged
        job drops them so the worker fetches full state. ``visible_at`` is
        left alone, so coalescing never postpones processing.
        """
        creation = is_creation(self.event_type) or is_creation(newer.event_type)
        if self.properties is None or newer.properties is None or creation:
            properties = None
        else:
            properties = {**self.properties, **newer.properties}
        event_type = self.event_type if is_creation(self.event_type) else newer.event_type
        return self.model_copy(
            update={
                "event_id": newer.event_id or self.event_id,
                "event_type": event_type,
                "properties": properties,
                "coalesced_count": self.coalesced_count + 1,
                "updated_at": now,
            }
        )


def backoff_delay(
    attempt: int,
    *,
    base_seconds: float = 2.0,
    multiplier: float = 2.0,
    max_seconds: float = 60.0,
) -> timedelta:
    """Exponential backoff after the ``attempt``-th failure (1-based): 2s, 4s, 8s..."""
    seconds = base_seconds * multiplier ** max(attempt - 1, 0)
    return timedelta(seconds=min(seconds, max_seconds))
