"""Consumer intake: signature check, validation, enqueue."""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

import structlog

from sync_common.exceptions import AuthError, ValidationError
from sync_common.signing import verify
from webhook_sync import metrics
from webhook_sync.domain.events import InboundEvent
from webhook_sync.domain.jobs import DeliveryJob
from webhook_sync.repositories.jobs import JobStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class IntakeResult:
    event_id: str | None
    job_id: str
    coalesced: bool

    def to_response(self) -> dict:
        return {
            "message": "Webhook received",
            "eventId": self.event_id,
            "jobId": self.job_id,
            "coalesced": self.coalesced,
        }


class ConsumerIntake:
    """Turns verified webhook bodies into queued jobs. Never processes inline."""

    def __init__(
        self,
        jobs: JobStore,
        *,
        secret: str,
        verify_signature: bool = True,
        processing_delay: timedelta = timedelta(seconds=1),
        max_attempts: int = 3,
        coalesce: bool = True,
    ):
        self._jobs = jobs
        self._secret = secret
        self._verify_signature = verify_signature
        self._delay = processing_delay
        self._max_attempts = max_attempts
        self._coalesce = coalesce

    async def ingest(self, raw_body: bytes, signature: str | None, *, now: datetime | None = None) -> IntakeResult:
        if self._verify_signature and not verify(self._secret, raw_body, signature):
            logger.warning("Rejected webhook with invalid signature", has_signature=bool(signature))
            raise AuthError("Invalid webhook signature")
        try:
            body = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValidationError("Invalid JSON payload") from exc

        event = InboundEvent.from_body(body)
        now = now or datetime.now(timezone.utc)
        job = DeliveryJob.new(
            event_id=event.event_id,
            event_type=event.event_type,
            object_type=event.object_type,
            object_id=event.object_id,
            properties=event.properties,
            now=now,
            delay=self._delay,
            max_attempts=self._max_attempts,
        )
        stored, coalesced = await self._jobs.enqueue(job, coalesce=self._coalesce, now=now)
        metrics.events_received.labels(
            event_type=event.event_type,
            object_type=event.object_type.lower(),
            coalesced=str(coalesced).lower(),
        ).inc()
        logger.info(
            "Queued webhook event",
            event_id=event.event_id,
            event_type=event.event_type,
            object_type=event.object_type,
            object_id=event.object_id,
            job_id=stored.id,
            coalesced=coalesced,
        )
        return IntakeResult(event_id=event.event_id, job_id=stored.id, coalesced=coalesced)

    async def backfill(
        self, object_type: str, object_ids: Iterable[str | int], *, now: datetime | None = None
    ) -> int:
        """Queue full-state syncs for known objects (initial load, repair)."""
        object_type = (object_type or "").strip()
        if not object_type:
            raise ValidationError("objectType is required")
        ids = [str(i).strip() for i in object_ids if str(i).strip()]
        if not ids:
            raise ValidationError("objectIds must contain at least one id")

        now = now or datetime.now(timezone.utc)
        event_type = f"{object_type.lower()}.propertyChange"
        queued = 0
        for object_id in dict.fromkeys(ids):
            job = DeliveryJob.new(
                event_type=event_type,
                object_type=object_type,
                object_id=object_id,
                properties=None,
                now=now,
                delay=timedelta(0),
                max_attempts=self._max_attempts,
            )
            await self._jobs.enqueue(job, coalesce=self._coalesce, now=now)
            queued += 1
        logger.info("Backfill queued", object_type=object_type, requested=len(ids), queued=queued)
        return queued
