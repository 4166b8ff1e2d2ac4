"""Worker tasks: stuck-job reclaim and done-job purge."""
from __future__ import annotations

from datetime import datetime

from sync_common.worker import TaskFn
from webhook_sync.services.queue import JobQueue


def stuck_job_reclaim(queue: JobQueue) -> TaskFn:
    async def reclaim(now: datetime) -> str | None:
        requeued, failed = await queue.reclaim_stuck(now)
        return f"requeued={requeued} failed={failed}" if requeued or failed else None

    return reclaim


def done_job_purge(queue: JobQueue) -> TaskFn:
    async def purge(now: datetime) -> str | None:
        purged = await queue.purge_done(now)
        return f"purged={purged}" if purged else None

    return purge
