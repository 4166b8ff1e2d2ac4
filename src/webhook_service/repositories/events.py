"""Retained change events (append-only, bounded by a retention window)."""
from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from asyncpg import Pool  # type: ignore[import-untyped]

from sync_common.db.pool import BaseRepository
from webhook_service.domain.events import ChangeEvent


@dataclass(frozen=True)
class RetainedEvent:
    event: ChangeEvent
    recorded_at: datetime


class EventStore(Protocol):
    async def append(self, event: ChangeEvent, recorded_at: datetime) -> None: ...

    async def get(self, event_id: str, *, recorded_after: datetime) -> ChangeEvent | None: ...

    async def purge(self, recorded_before: datetime) -> int: ...

    async def count_by_type(self, *, recorded_after: datetime) -> dict[str, int]: ...


class InMemoryEventStore:
    def __init__(self) -> None:
        self._records: list[RetainedEvent] = []

    async def append(self, event: ChangeEvent, recorded_at: datetime) -> None:
        self._records.append(RetainedEvent(event=event, recorded_at=recorded_at))

    async def get(self, event_id: str, *, recorded_after: datetime) -> ChangeEvent | None:
        for record in reversed(self._records):
            if record.event.event_id == event_id and record.recorded_at >= recorded_after:
                return record.event
        return None

    async def purge(self, recorded_before: datetime) -> int:
        kept = [r for r in self._records if r.recorded_at >= recorded_before]
        purged = len(self._records) - len(kept)
        self._records = kept
        return purged

    async def count_by_type(self, *, recorded_after: datetime) -> dict[str, int]:
        return dict(
            Counter(r.event.event_type for r in self._records if r.recorded_at >= recorded_after)
        )


class PostgresEventStore(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    async def append(self, event: ChangeEvent, recorded_at: datetime) -> None:
        await self._execute(
            """
            INSERT INTO webhook_events (event_id, event_type, object_type, object_id, payload, recorded_at)
            VALUES ($1, $2, $3, $4, $5::jsonb, $6)
            """,
            event.event_id,
            event.event_type,
            event.object_type,
            event.object_id,
            json.dumps(event.to_payload()),
            recorded_at,
        )

    async def get(self, event_id: str, *, recorded_after: datetime) -> ChangeEvent | None:
        record = await self._fetchrow(
            """
            SELECT payload
            FROM webhook_events
            WHERE event_id = $1 AND recorded_at >= $2
            ORDER BY position DESC
            LIMIT 1
            """,
            event_id,
            recorded_after,
        )
        if record is None:
            return None
        payload = record["payload"]
        if isinstance(payload, str):
            payload = json.loads(payload)
        return ChangeEvent.model_validate(payload)

    async def purge(self, recorded_before: datetime) -> int:
        result = await self._execute("DELETE FROM webhook_events WHERE recorded_at < $1", recorded_before)
        return self._affected(result)

    async def count_by_type(self, *, recorded_after: datetime) -> dict[str, int]:
        records = await self._fetch(
            """
            SELECT event_type, COUNT(*) AS total
            FROM webhook_events
            WHERE recorded_at >= $1
            GROUP BY event_type
            """,
            recorded_after,
        )
        return {r["event_type"]: int(r["total"]) for r in records}
