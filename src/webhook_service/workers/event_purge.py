"""Worker: drop retained events older than the retention window."""
from __future__ import annotations

from datetime import datetime

from sync_common.worker import TaskFn
from webhook_service.services.publisher import EventPublisher


def event_retention_purge(publisher: EventPublisher) -> TaskFn:
    async def purge(now: datetime) -> str | None:
        purged = await publisher.purge_expired(now)
        return f"purged={purged}" if purged else None

    return purge
