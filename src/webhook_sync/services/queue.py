"""Operator view of the job queue."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from sync_common.exceptions import NotFoundError, ValidationError
from webhook_sync import metrics
from webhook_sync.domain.jobs import DeliveryJob, JobStatus
from webhook_sync.repositories.jobs import JobStore

logger = structlog.get_logger(__name__)


class JobQueue:
    def __init__(
        self,
        jobs: JobStore,
        *,
        stuck_after: timedelta = timedelta(minutes=5),
        done_retention: timedelta = timedelta(hours=24),
    ):
        self._jobs = jobs
        self._stuck_after = stuck_after
        self._done_retention = done_retention

    async def get(self, job_id: str) -> DeliveryJob:
        job = await self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("Job not found")
        return job

    async def list(
        self, *, status: str | None = None, limit: int = 50, offset: int = 0
    ) -> tuple[list[DeliveryJob], int]:
        parsed: JobStatus | None = None
        if status:
            try:
                parsed = JobStatus(status)
            except ValueError as exc:
                allowed = ", ".join(s.value for s in JobStatus)
                raise ValidationError(f"Unknown job status {status!r}; expected one of {allowed}") from exc
        return await self._jobs.list(status=parsed, limit=limit, offset=offset)

    async def retry(self, job_id: str, now: datetime | None = None) -> DeliveryJob:
        job = await self._jobs.retry(job_id, now or datetime.now(timezone.utc))
        logger.info("Job re-queued by operator", job_id=job_id)
        return job

    async def reclaim_stuck(self, now: datetime | None = None) -> tuple[int, int]:
        """Re-queue stuck jobs with attempts left; fail those that used their last one."""
        now = now or datetime.now(timezone.utc)
        requeued, failed = await self._jobs.reclaim_stuck(now - self._stuck_after, now)
        if failed:
            metrics.jobs_failed.labels(reason="exhausted").inc(failed)
        if requeued or failed:
            logger.warning("Reclaimed stuck jobs", requeued=requeued, failed=failed)
        return requeued, failed

    async def purge_done(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        return await self._jobs.purge_done(now - self._done_retention)

    async def stats(self) -> dict[str, Any]:
        counts = await self._jobs.counts()
        return {"jobs": counts, "totalJobs": sum(counts.values())}


def job_to_response(job: DeliveryJob) -> dict[str, Any]:
    return {
        "id": job.id,
        "eventId": job.event_id,
        "eventType": job.event_type,
        "objectType": job.object_type,
        "objectId": job.object_id,
        "status": job.status.value,
        "attemptCount": job.attempt_count,
        "maxAttempts": job.max_attempts,
        "coalescedCount": job.coalesced_count,
        "lastError": job.last_error,
        "enqueuedAt": job.enqueued_at.isoformat(),
        "visibleAt": job.visible_at.isoformat(),
        "updatedAt": job.updated_at.isoformat(),
    }
