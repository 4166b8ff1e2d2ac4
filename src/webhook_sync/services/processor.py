"""One attempt at syncing one job: fetch if needed, transform, push."""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog

from sync_common.exceptions import AuthError, DeliveryError, ExhaustedRetriesError, ValidationError
from webhook_sync import metrics
from webhook_sync.domain.jobs import DeliveryJob, backoff_delay
from webhook_sync.repositories.jobs import JobStore
from webhook_sync.services.transform import collection_name, needs_fetch, sink_payload, to_sink_record

logger = structlog.get_logger(__name__)


class ObjectFetcher(Protocol):
    async def fetch(self, collection: str, object_id: str) -> dict[str, Any] | None: ...


class RecordPusher(Protocol):
    async def push(self, payload: dict[str, Any]) -> dict[str, Any]: ...


class JobProcessor:
    def __init__(
        self,
        jobs: JobStore,
        crm: ObjectFetcher,
        sink: RecordPusher,
        *,
        source_prefix: str = "CRM-Webhook",
        backoff_base_seconds: float = 2.0,
        backoff_multiplier: float = 2.0,
        backoff_max_seconds: float = 60.0,
    ):
        self._jobs = jobs
        self._crm = crm
        self._sink = sink
        self._source_prefix = source_prefix
        self._backoff = {
            "base_seconds": backoff_base_seconds,
            "multiplier": backoff_multiplier,
            "max_seconds": backoff_max_seconds,
        }

    async def process(self, job: DeliveryJob) -> str:
        """Run a claimed job and record its outcome in the store.

        Returns ``done``, ``skipped`` (object gone from the CRM), ``retry`` or
        ``failed``. Collaborator errors never propagate; they become job state.
        """
        collection = collection_name(job.object_type)
        log = logger.bind(
            job_id=job.id,
            event_id=job.event_id,
            collection=collection,
            object_id=job.object_id,
            attempt=job.attempt_count,
        )
        started = time.monotonic()
        try:
            pushed = await self._sync(job, collection)
        except DeliveryError as exc:
            return await self._transient_failure(job, exc, log)
        except (AuthError, ValidationError) as exc:
            return await self._permanent_failure(job, exc, log)
        except Exception as exc:
            log.exception("Unexpected error while processing job")
            return await self._transient_failure(job, exc, log)
        finally:
            metrics.processing_duration.labels(collection=collection).observe(time.monotonic() - started)

        await self._jobs.complete(job.id, datetime.now(timezone.utc))
        outcome = "done" if pushed else "skipped"
        metrics.jobs.labels(outcome=outcome).inc()
        log.info("Job completed", outcome=outcome)
        return outcome

    async def _sync(self, job: DeliveryJob, collection: str) -> bool:
        if needs_fetch(job.event_type, collection, job.properties):
            obj = await self._crm.fetch(collection, job.object_id)
            if obj is None:
                return False
        else:
            obj = {"id": job.object_id, "properties": job.properties}

        record = to_sink_record(collection, obj)
        await self._sink.push(sink_payload(collection, [record], source_prefix=self._source_prefix))
        return True

    async def _transient_failure(self, job: DeliveryJob, exc: Exception, log) -> str:
        error = f"{type(exc).__name__}: {exc}"
        now = datetime.now(timezone.utc)
        if job.attempts_left:
            delay = backoff_delay(job.attempt_count, **self._backoff)
            await self._jobs.reschedule(job.id, visible_at=now + delay, error=error, now=now)
            metrics.jobs.labels(outcome="retry").inc()
            log.warning("Job attempt failed, retrying", error=error, retry_in_seconds=delay.total_seconds())
            return "retry"

        await self._jobs.fail(job.id, error=error, now=now)
        exhausted = ExhaustedRetriesError(job.id, job.attempt_count, error)
        metrics.jobs.labels(outcome="failed").inc()
        metrics.jobs_failed.labels(reason="exhausted").inc()
        log.error("Job failed permanently", error=str(exhausted), error_type=type(exhausted).__name__)
        return "failed"

    async def _permanent_failure(self, job: DeliveryJob, exc: Exception, log) -> str:
        error = f"{type(exc).__name__}: {exc}"
        await self._jobs.fail(job.id, error=error, now=datetime.now(timezone.utc))
        metrics.jobs.labels(outcome="failed").inc()
        metrics.jobs_failed.labels(reason="rejected").inc()
        log.error("Job rejected by collaborator", error=error)
        return "failed"
