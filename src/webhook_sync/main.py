"""aiohttp application entrypoint for the webhook sync consumer."""
from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Any

import structlog
from aiohttp import web

from sync_common.aiohttp_app import add_cors_to_routes, add_healthcheck, create_base_app
from sync_common.db.migrations import apply_migrations
from sync_common.db.pool import create_pool
from sync_common.logging_config import configure_logging
from sync_common.otel import setup_otel
from webhook_sync.api.router import setup_routes
from webhook_sync.clients import BrokerClient, CrmClient, SinkClient
from webhook_sync.repositories import InMemoryJobStore, JobStore, PostgresJobStore
from webhook_sync.services import ConsumerIntake, JobProcessor, JobQueue
from webhook_sync.services.dependencies import INTAKE_KEY, QUEUE_KEY
from webhook_sync.settings import settings
from webhook_sync.worker_pool import RetryQueueWorkerPool
from webhook_sync.workers import build_worker

logger = structlog.get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

_POOL_KEY = "db_pool"
_CLIENTS_KEY = "api_clients"
WORKER_POOL_KEY = "retry_queue_pool"
_WORKER_KEY = "housekeeping_worker"
_BROKER_KEY = "broker_client"
_SUBSCRIPTION_KEY = "broker_subscription_id"


async def _build_store(app: web.Application) -> JobStore:
    if settings.storage_backend == "memory":
        logger.warning("Using in-memory storage; queued jobs are lost on restart")
        return InMemoryJobStore()

    pool = await create_pool(settings)
    app[_POOL_KEY] = pool
    await apply_migrations(pool, MIGRATIONS_DIR, table="webhook_sync_migrations")
    return PostgresJobStore(pool)


async def _health_info(app: web.Application) -> dict[str, Any]:
    pool: RetryQueueWorkerPool | None = app.get(WORKER_POOL_KEY)
    return {
        "storage": settings.storage_backend,
        "workers": pool.running if pool is not None else 0,
        "brokerSubscriptionId": app.get(_SUBSCRIPTION_KEY),
    }


def create_app(
    *,
    job_store: JobStore | None = None,
    crm_client: CrmClient | None = None,
    sink_client: SinkClient | None = None,
    broker_client: BrokerClient | None = None,
    start_workers: bool = True,
) -> web.Application:
    """Build the consumer app. Store and clients can be injected (tests).

    With ``start_workers=False`` nothing drains the queue on its own; callers
    drive it through the ``RetryQueueWorkerPool`` stored on the app.
    """
    app, cors = create_base_app(settings)

    async def init_services(app: web.Application) -> None:
        jobs = job_store or await _build_store(app)

        crm = crm_client or CrmClient(
            base_url=settings.crm_api_url,
            objects_path=settings.crm_objects_path,
            timeout_s=settings.crm_timeout_seconds,
        )
        sink = sink_client or SinkClient(
            base_url=settings.sink_api_url,
            api_token=settings.sink_api_token,
            timeout_s=settings.sink_timeout_seconds,
        )
        await crm.start()
        await sink.start()
        app[_CLIENTS_KEY] = [crm, sink]

        app[INTAKE_KEY] = ConsumerIntake(
            jobs,
            secret=settings.webhook_secret,
            verify_signature=settings.webhook_verify_signature,
            processing_delay=timedelta(seconds=settings.processing_delay_seconds),
            max_attempts=settings.max_attempts,
            coalesce=settings.coalesce_enabled,
        )
        queue = JobQueue(
            jobs,
            stuck_after=timedelta(seconds=settings.job_stuck_seconds),
            done_retention=timedelta(hours=settings.job_done_retention_hours),
        )
        app[QUEUE_KEY] = queue

        processor = JobProcessor(
            jobs,
            crm,
            sink,
            source_prefix=settings.sink_source_prefix,
            backoff_base_seconds=settings.backoff_base_seconds,
            backoff_multiplier=settings.backoff_multiplier,
            backoff_max_seconds=settings.backoff_max_seconds,
        )
        worker_pool = RetryQueueWorkerPool(
            jobs,
            processor,
            concurrency=settings.worker_concurrency,
            poll_interval_seconds=settings.poll_interval_seconds,
        )
        app[WORKER_POOL_KEY] = worker_pool
        worker = build_worker(queue, interval_seconds=settings.worker_interval_seconds)
        app[_WORKER_KEY] = worker
        if start_workers:
            await worker_pool.start(app)
            await worker.start(app)

        if settings.broker_subscribe_on_startup:
            broker = broker_client or BrokerClient(base_url=settings.broker_url)
            await broker.start()
            app[_BROKER_KEY] = broker
            app[_SUBSCRIPTION_KEY] = await broker.subscribe(
                url=settings.public_webhook_url,
                events=settings.broker_event_patterns,
                secret=settings.webhook_secret,
            )

        logger.info(
            "Webhook sync ready",
            storage=settings.storage_backend,
            concurrency=settings.worker_concurrency,
            workers_started=start_workers,
        )

    async def close_services(app: web.Application) -> None:
        broker: BrokerClient | None = app.get(_BROKER_KEY)
        if broker is not None:
            subscription_id = app.get(_SUBSCRIPTION_KEY)
            if subscription_id:
                try:
                    await broker.unsubscribe(subscription_id)
                except Exception:
                    logger.exception("Failed to unsubscribe from broker", subscription_id=subscription_id)
            await broker.close()

        worker_pool = app.get(WORKER_POOL_KEY)
        if worker_pool is not None:
            await worker_pool.stop(app)
        worker = app.get(_WORKER_KEY)
        if worker is not None:
            await worker.stop(app)
        for client in app.get(_CLIENTS_KEY, []):
            await client.close()
        pool = app.get(_POOL_KEY)
        if pool is not None:
            await pool.close()

    add_healthcheck(app, settings, extra=_health_info)
    setup_routes(app)
    setup_otel(app, settings)

    app.on_startup.append(init_services)
    app.on_cleanup.append(close_services)

    add_cors_to_routes(app, cors)
    return app


def main() -> None:
    configure_logging(settings.log_level)
    web.run_app(create_app(), host=settings.host, port=settings.port, access_log=None)


if __name__ == "__main__":
    main()
