"""Bounded pool of asyncio workers draining the job queue.

Usage::

    pool = RetryQueueWorkerPool(jobs, processor, concurrency=4, poll_interval_seconds=0.2)
    app.on_startup.append(pool.start)
    app.on_cleanup.append(pool.stop)

Cancelling a worker mid-job leaves the job in ``processing``; once its lock is
older than the stuck threshold the housekeeping worker puts it back to
``pending``, or fails it when that claim was its last attempt.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog
from aiohttp import web

from sync_common.otel import get_tracer
from webhook_sync.domain.jobs import DeliveryJob
from webhook_sync.repositories.jobs import JobStore
from webhook_sync.services.processor import JobProcessor

logger = structlog.get_logger(__name__)
_tracer = get_tracer(__name__)


class RetryQueueWorkerPool:
    def __init__(
        self,
        jobs: JobStore,
        processor: JobProcessor,
        *,
        concurrency: int = 4,
        poll_interval_seconds: float = 0.2,
        name: str = "retry_queue",
    ):
        self._jobs = jobs
        self._processor = processor
        self._concurrency = max(concurrency, 1)
        self._poll_interval = poll_interval_seconds
        self.name = name
        self._tasks: list[asyncio.Task] = []

    @property
    def _app_key(self) -> str:
        return f"__worker_pool__{self.name}"

    @property
    def running(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    async def start(self, app: web.Application | None = None) -> None:
        self._tasks = [
            asyncio.create_task(self._worker(index), name=f"{self.name}-{index}")
            for index in range(self._concurrency)
        ]
        if app is not None:
            app[self._app_key] = self._tasks
        logger.info("worker_pool started", pool=self.name, concurrency=self._concurrency)

    async def stop(self, app: web.Application | None = None) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("worker_pool stopped", pool=self.name)

    async def run_once(self, now: datetime | None = None) -> list[str]:
        """Drain every job due at ``now`` with up to ``concurrency`` workers.

        Jobs rescheduled during the drain are picked up again when their new
        ``visible_at`` is not after ``now``.
        """
        now = now or datetime.now(timezone.utc)
        outcomes: list[str] = []

        async def drain() -> None:
            while True:
                job = await self._jobs.claim_due(now)
                if job is None:
                    return
                outcome = await self._handle(job)
                if outcome is not None:
                    outcomes.append(outcome)

        await asyncio.gather(*(drain() for _ in range(self._concurrency)))
        return outcomes

    async def _handle(self, job: DeliveryJob) -> str | None:
        try:
            with _tracer.start_as_current_span(
                "process_job",
                attributes={"job.id": job.id, "job.attempt": job.attempt_count, "job.object_type": job.object_type},
            ):
                return await self._processor.process(job)
        except asyncio.CancelledError:
            raise
        except Exception:
            # e.g. the job was reclaimed while we held it
            logger.exception("Failed to record job outcome", job_id=job.id)
            return None

    async def _worker(self, index: int) -> None:
        while True:
            try:
                job = await self._jobs.claim_due(datetime.now(timezone.utc))
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Failed to claim job", pool=self.name, worker=index)
                await asyncio.sleep(self._poll_interval)
                continue
            if job is None:
                await asyncio.sleep(self._poll_interval)
                continue
            await self._handle(job)
