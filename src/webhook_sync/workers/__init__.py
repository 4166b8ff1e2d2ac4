"""Background workers for webhook-sync."""
from __future__ import annotations

from sync_common.worker import BackgroundWorker, WorkerTask
from webhook_sync.services.queue import JobQueue
from webhook_sync.workers.housekeeping import done_job_purge, stuck_job_reclaim


def build_worker(queue: JobQueue, *, interval_seconds: float) -> BackgroundWorker:
    return BackgroundWorker(
        name="webhook_sync_housekeeping",
        interval_seconds=interval_seconds,
        tasks=[
            WorkerTask(name="stuck_job_reclaim", fn=stuck_job_reclaim(queue)),
            WorkerTask(name="done_job_purge", fn=done_job_purge(queue)),
        ],
    )


__all__ = ["build_worker"]
