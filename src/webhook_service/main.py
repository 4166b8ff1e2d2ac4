"""aiohttp application entrypoint for the webhook broker."""
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
from webhook_service.api.router import setup_routes
from webhook_service.delivery import DeliveryClient
from webhook_service.repositories import (
    EventStore,
    InMemoryEventStore,
    InMemorySubscriptionStore,
    PostgresEventStore,
    PostgresSubscriptionStore,
    SubscriptionStore,
)
from webhook_service.services import EventPublisher, SubscriberHealthTracker, SubscriptionRegistry
from webhook_service.services.dependencies import PUBLISHER_KEY, REGISTRY_KEY
from webhook_service.settings import settings
from webhook_service.workers import build_worker

logger = structlog.get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

_POOL_KEY = "db_pool"
_DELIVERY_KEY = "delivery_client"
_WORKER_KEY = "housekeeping_worker"


async def _build_stores(app: web.Application) -> tuple[SubscriptionStore, EventStore]:
    if settings.storage_backend == "memory":
        logger.warning("Using in-memory storage; subscriptions and events are lost on restart")
        return InMemorySubscriptionStore(), InMemoryEventStore()

    pool = await create_pool(settings)
    app[_POOL_KEY] = pool
    await apply_migrations(pool, MIGRATIONS_DIR, table="webhook_service_migrations")
    return PostgresSubscriptionStore(pool), PostgresEventStore(pool)


async def _health_info(app: web.Application) -> dict[str, Any]:
    registry: SubscriptionRegistry | None = app.get(REGISTRY_KEY)
    subscribers = len(await registry.list()) if registry is not None else 0
    return {"subscribers": subscribers, "storage": settings.storage_backend}


def create_app(
    *,
    subscription_store: SubscriptionStore | None = None,
    event_store: EventStore | None = None,
    delivery_client: DeliveryClient | None = None,
) -> web.Application:
    """Build the broker app. Stores and client can be injected (tests)."""
    app, cors = create_base_app(settings)

    async def init_services(app: web.Application) -> None:
        subscriptions, events = subscription_store, event_store
        if subscriptions is None or events is None:
            built_subscriptions, built_events = await _build_stores(app)
            subscriptions = subscriptions or built_subscriptions
            events = events or built_events

        client = delivery_client or DeliveryClient(timeout_seconds=settings.delivery_timeout_seconds)
        await client.start()
        app[_DELIVERY_KEY] = client

        registry = SubscriptionRegistry(subscriptions, default_secret=settings.default_subscription_secret)
        health = SubscriberHealthTracker(subscriptions, error_threshold=settings.subscriber_error_threshold)
        publisher = EventPublisher(
            registry,
            events,
            client,
            health,
            retention=timedelta(hours=settings.event_retention_hours),
        )
        app[REGISTRY_KEY] = registry
        app[PUBLISHER_KEY] = publisher
        await registry.refresh_gauge()

        worker = build_worker(publisher, interval_seconds=settings.worker_interval_seconds)
        app[_WORKER_KEY] = worker
        await worker.start(app)
        logger.info(
            "Webhook service ready",
            subscribers=len(await registry.list()),
            storage=settings.storage_backend,
        )

    async def close_services(app: web.Application) -> None:
        worker = app.get(_WORKER_KEY)
        if worker is not None:
            await worker.stop(app)
        client = app.get(_DELIVERY_KEY)
        if client is not None:
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
