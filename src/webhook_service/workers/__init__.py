"""Background workers for webhook-service."""
from __future__ import annotations

from sync_common.worker import BackgroundWorker, WorkerTask
from webhook_service.services.publisher import EventPublisher
from webhook_service.workers.event_purge import event_retention_purge


def build_worker(publisher: EventPublisher, *, interval_seconds: float) -> BackgroundWorker:
    return BackgroundWorker(
        name="webhook_service_housekeeping",
        interval_seconds=interval_seconds,
        tasks=[WorkerTask(name="event_retention_purge", fn=event_retention_purge(publisher))],
    )


__all__ = ["build_worker"]
