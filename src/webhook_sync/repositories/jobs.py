"""Persisted job queue (in-process and Postgres implementations)."""
from __future__ import annotations

import json
from collections import Counter
from datetime import datetime
from typing import Any, Protocol

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from sync_common.db.pool import BaseRepository
from sync_common.exceptions import InvalidJobTransitionError, NotFoundError
from webhook_sync.domain.jobs import DeliveryJob, JobStatus, validate_job_transition

STUCK_AFTER_FINAL_ATTEMPT = "stuck after final attempt"


class JobStore(Protocol):
    """Job table. Every state change is one atomic operation on one job."""

    async def enqueue(self, job: DeliveryJob, *, coalesce: bool, now: datetime) -> tuple[DeliveryJob, bool]: ...

    async def claim_due(self, now: datetime) -> DeliveryJob | None: ...

    async def complete(self, job_id: str, now: datetime) -> DeliveryJob: ...

    async def reschedule(self, job_id: str, *, visible_at: datetime, error: str, now: datetime) -> DeliveryJob: ...

    async def fail(self, job_id: str, *, error: str, now: datetime) -> DeliveryJob: ...

    async def retry(self, job_id: str, now: datetime) -> DeliveryJob: ...

    async def get(self, job_id: str) -> DeliveryJob | None: ...

    async def list(
        self, *, status: JobStatus | None = None, limit: int = 50, offset: int = 0
    ) -> tuple[list[DeliveryJob], int]: ...

    async def counts(self) -> dict[str, int]: ...

    async def reclaim_stuck(self, locked_before: datetime, now: datetime) -> tuple[int, int]: ...

    async def purge_done(self, updated_before: datetime) -> int: ...


class InMemoryJobStore:
    """Dict-backed queue for tests and local runs.

    No method awaits between reading and writing a job, which makes each
    operation atomic with respect to other coroutines on the loop.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, DeliveryJob] = {}

    async def enqueue(self, job: DeliveryJob, *, coalesce: bool, now: datetime) -> tuple[DeliveryJob, bool]:
        if coalesce:
            for existing in self._jobs.values():
                if (
                    existing.coalesce_key == job.coalesce_key
                    and existing.status == JobStatus.PENDING
                    and existing.visible_at > now
                ):
                    merged = existing.merged_with(job, now)
                    self._jobs[merged.id] = merged
                    return merged, True
        self._jobs[job.id] = job
        return job, False

    async def claim_due(self, now: datetime) -> DeliveryJob | None:
        due = [
            j for j in self._jobs.values()
            if j.status == JobStatus.PENDING and j.visible_at <= now
        ]
        if not due:
            return None
        job = min(due, key=lambda j: (j.visible_at, j.enqueued_at))
        claimed = job.model_copy(
            update={
                "status": JobStatus.PROCESSING,
                "attempt_count": job.attempt_count + 1,
                "locked_at": now,
                "updated_at": now,
            }
        )
        self._jobs[job.id] = claimed
        return claimed

    def _transition(self, job_id: str, new: JobStatus, **changes: Any) -> DeliveryJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("Job not found")
        validate_job_transition(job.status, new)
        updated = job.model_copy(update={"status": new, **changes})
        self._jobs[job_id] = updated
        return updated

    async def complete(self, job_id: str, now: datetime) -> DeliveryJob:
        return self._transition(job_id, JobStatus.DONE, locked_at=None, last_error=None, updated_at=now)

    async def reschedule(self, job_id: str, *, visible_at: datetime, error: str, now: datetime) -> DeliveryJob:
        return self._transition(
            job_id, JobStatus.PENDING, visible_at=visible_at, locked_at=None, last_error=error, updated_at=now
        )

    async def fail(self, job_id: str, *, error: str, now: datetime) -> DeliveryJob:
        return self._transition(job_id, JobStatus.FAILED, locked_at=None, last_error=error, updated_at=now)

    async def retry(self, job_id: str, now: datetime) -> DeliveryJob:
        return self._transition(
            job_id, JobStatus.PENDING, attempt_count=0, visible_at=now, locked_at=None, updated_at=now
        )

    async def get(self, job_id: str) -> DeliveryJob | None:
        return self._jobs.get(job_id)

    async def list(
        self, *, status: JobStatus | None = None, limit: int = 50, offset: int = 0
    ) -> tuple[list[DeliveryJob], int]:
        items = [j for j in self._jobs.values() if status is None or j.status == status]
        items.sort(key=lambda j: j.enqueued_at, reverse=True)
        return items[offset: offset + limit], len(items)

    async def counts(self) -> dict[str, int]:
        counter = Counter(j.status.value for j in self._jobs.values())
        return {status.value: counter.get(status.value, 0) for status in JobStatus}

    async def reclaim_stuck(self, locked_before: datetime, now: datetime) -> tuple[int, int]:
        requeued = failed = 0
        for job in list(self._jobs.values()):
            if job.status != JobStatus.PROCESSING or job.locked_at is None or job.locked_at >= locked_before:
                continue
            if job.attempts_left:
                changes = {"status": JobStatus.PENDING, "visible_at": now}
                requeued += 1
            else:
                changes = {"status": JobStatus.FAILED, "last_error": STUCK_AFTER_FINAL_ATTEMPT}
                failed += 1
            self._jobs[job.id] = job.model_copy(update={**changes, "locked_at": None, "updated_at": now})
        return requeued, failed

    async def purge_done(self, updated_before: datetime) -> int:
        stale = [
            job_id for job_id, job in self._jobs.items()
            if job.status == JobStatus.DONE and job.updated_at < updated_before
        ]
        for job_id in stale:
            del self._jobs[job_id]
        return len(stale)


class PostgresJobStore(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> DeliveryJob:
        payload = dict(record)
        value = payload.get("properties")
        if isinstance(value, str):
            payload["properties"] = json.loads(value)
        return DeliveryJob.model_validate(payload)

    @staticmethod
    def _properties_json(job: DeliveryJob) -> str | None:
        return json.dumps(job.properties) if job.properties is not None else None

    async def enqueue(self, job: DeliveryJob, *, coalesce: bool, now: datetime) -> tuple[DeliveryJob, bool]:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                if coalesce:
                    record = await conn.fetchrow(
                        """
                        SELECT *
                        FROM delivery_jobs
                        WHERE coalesce_key = $1
                          AND status = 'pending'
                          AND visible_at > $2
                        ORDER BY enqueued_at ASC
                        LIMIT 1
                        FOR UPDATE
                        """,
                        job.coalesce_key,
                        now,
                    )
                    if record is not None:
                        merged = self._to_model(record).merged_with(job, now)
                        updated = await conn.fetchrow(
                            """
                            UPDATE delivery_jobs
                            SET event_id = $2,
                                event_type = $3,
                                properties = $4::jsonb,
                                coalesced_count = $5,
                                updated_at = $6
                            WHERE id = $1
                            RETURNING *
                            """,
                            merged.id,
                            merged.event_id,
                            merged.event_type,
                            self._properties_json(merged),
                            merged.coalesced_count,
                            now,
                        )
                        return self._to_model(updated), True

                inserted = await conn.fetchrow(
                    """
                    INSERT INTO delivery_jobs (
                        id, event_id, event_type, object_type, object_id, properties,
                        coalesce_key, status, attempt_count, max_attempts,
                        enqueued_at, visible_at, coalesced_count, updated_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, 'pending', 0, $8, $9, $10, 0, $9)
                    RETURNING *
                    """,
                    job.id,
                    job.event_id,
                    job.event_type,
                    job.object_type,
                    job.object_id,
                    self._properties_json(job),
                    job.coalesce_key,
                    job.max_attempts,
                    job.enqueued_at,
                    job.visible_at,
                )
                return self._to_model(inserted), False

    async def claim_due(self, now: datetime) -> DeliveryJob | None:
        """Claim the oldest visible job; ``SKIP LOCKED`` keeps workers off each other's rows."""
        record = await self._fetchrow(
            """
            WITH cte AS (
                SELECT id
                FROM delivery_jobs
                WHERE status = 'pending'
                  AND visible_at <= $1
                ORDER BY visible_at ASC, enqueued_at ASC
                FOR UPDATE SKIP LOCKED
                LIMIT 1
            )
            UPDATE delivery_jobs j
            SET status = 'processing',
                locked_at = $1,
                attempt_count = j.attempt_count + 1,
                updated_at = $1
            FROM cte
            WHERE j.id = cte.id
            RETURNING j.*
            """,
            now,
        )
        return self._to_model(record) if record else None

    async def _transition(self, job_id: str, new: JobStatus, query: str, *args: Any) -> DeliveryJob:
        record = await self._fetchrow(query, job_id, *args)
        if record is not None:
            return self._to_model(record)
        current = await self.get(job_id)
        if current is None:
            raise NotFoundError("Job not found")
        validate_job_transition(current.status, new)
        # the row moved on between the UPDATE and the lookup
        raise InvalidJobTransitionError(f"Job {job_id} changed state concurrently")

    async def complete(self, job_id: str, now: datetime) -> DeliveryJob:
        return await self._transition(
            job_id,
            JobStatus.DONE,
            """
            UPDATE delivery_jobs
            SET status = 'done', locked_at = NULL, last_error = NULL, updated_at = $2
            WHERE id = $1 AND status = 'processing'
            RETURNING *
            """,
            now,
        )

    async def reschedule(self, job_id: str, *, visible_at: datetime, error: str, now: datetime) -> DeliveryJob:
        return await self._transition(
            job_id,
            JobStatus.PENDING,
            """
            UPDATE delivery_jobs
            SET status = 'pending', locked_at = NULL, visible_at = $2, last_error = $3, updated_at = $4
            WHERE id = $1 AND status = 'processing'
            RETURNING *
            """,
            visible_at,
            error,
            now,
        )

    async def fail(self, job_id: str, *, error: str, now: datetime) -> DeliveryJob:
        return await self._transition(
            job_id,
            JobStatus.FAILED,
            """
            UPDATE delivery_jobs
            SET status = 'failed', locked_at = NULL, last_error = $2, updated_at = $3
            WHERE id = $1 AND status = 'processing'
            RETURNING *
            """,
            error,
            now,
        )

    async def retry(self, job_id: str, now: datetime) -> DeliveryJob:
        return await self._transition(
            job_id,
            JobStatus.PENDING,
            """
            UPDATE delivery_jobs
            SET status = 'pending', attempt_count = 0, visible_at = $2, locked_at = NULL, updated_at = $2
            WHERE id = $1 AND status = 'failed'
            RETURNING *
            """,
            now,
        )

    async def get(self, job_id: str) -> DeliveryJob | None:
        record = await self._fetchrow("SELECT * FROM delivery_jobs WHERE id = $1", job_id)
        return self._to_model(record) if record else None

    async def list(
        self, *, status: JobStatus | None = None, limit: int = 50, offset: int = 0
    ) -> tuple[list[DeliveryJob], int]:
        records = await self._fetch(
            """
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM delivery_jobs
            WHERE ($1::text IS NULL OR status = $1)
            ORDER BY enqueued_at DESC
            LIMIT $2 OFFSET $3
            """,
            status.value if status else None,
            limit,
            offset,
        )
        items: list[DeliveryJob] = []
        total = 0
        for rec in records:
            rec_dict = dict(rec)
            total = int(rec_dict.pop("total_count", 0))
            items.append(self._to_model(rec_dict))
        if not records and offset:
            counts = await self.counts()
            total = counts[status.value] if status else sum(counts.values())
        return items, total

    async def counts(self) -> dict[str, int]:
        records = await self._fetch("SELECT status, COUNT(*) AS total FROM delivery_jobs GROUP BY status")
        found = {r["status"]: int(r["total"]) for r in records}
        return {status.value: found.get(status.value, 0) for status in JobStatus}

    async def reclaim_stuck(self, locked_before: datetime, now: datetime) -> tuple[int, int]:
        """Release jobs stuck in ``processing`` (worker crashed or was cancelled).

        A job whose last claim used up its final attempt cannot be claimed
        again, so it is failed instead of re-queued.
        """
        records = await self._fetch(
            """
            UPDATE delivery_jobs
            SET status = CASE WHEN attempt_count >= max_attempts THEN 'failed' ELSE 'pending' END,
                last_error = CASE WHEN attempt_count >= max_attempts THEN $3 ELSE last_error END,
                visible_at = CASE WHEN attempt_count >= max_attempts THEN visible_at ELSE $2 END,
                locked_at = NULL,
                updated_at = $2
            WHERE status = 'processing'
              AND locked_at < $1
            RETURNING status
            """,
            locked_before,
            now,
            STUCK_AFTER_FINAL_ATTEMPT,
        )
        failed = sum(1 for r in records if r["status"] == JobStatus.FAILED.value)
        return len(records) - failed, failed

    async def purge_done(self, updated_before: datetime) -> int:
        result = await self._execute(
            "DELETE FROM delivery_jobs WHERE status = 'done' AND updated_at < $1",
            updated_before,
        )
        return self._affected(result)
