from __future__ import annotations

import json
import os
import shutil
from dataclasses import dataclass, field
from glob import glob
from pathlib import Path
from typing import Any

import asyncpg
import httpx
import pytest
from aiohttp import web
from testsuite.databases.pgsql import discover

from sync_common.db.migrations import apply_migrations
from webhook_service.main import MIGRATIONS_DIR as BROKER_MIGRATIONS
from webhook_service.main import create_app as create_broker_app
from webhook_service.repositories import (
    InMemoryEventStore,
    InMemorySubscriptionStore,
    PostgresEventStore,
    PostgresSubscriptionStore,
)
from webhook_sync.clients import CrmClient, SinkClient
from webhook_sync.main import MIGRATIONS_DIR as SYNC_MIGRATIONS
from webhook_sync.main import create_app as create_sync_app
from webhook_sync.repositories import InMemoryJobStore, PostgresJobStore
from webhook_sync.settings import settings as sync_settings

from tests.utils import SYNC_SECRET

pytest_plugins = (
    "testsuite.pytest_plugin",
    "testsuite.databases.pgsql.pytest_plugin",
)

PG_SCHEMAS_PATH = Path(__file__).parent / "schemas" / "postgresql"
PG_DBNAME = "crm_sync"

STORE_BACKENDS = ["memory", pytest.param("postgres", marks=pytest.mark.postgres)]


def _postgres_available(config: pytest.Config) -> bool:
    if config.getoption("--postgresql", default=None) or os.environ.get("TESTSUITE_PGSQL_BINDIR"):
        return True
    return bool(shutil.which("pg_ctl") or glob("/usr/lib/postgresql/*/bin/pg_ctl"))


def pytest_collection_modifyitems(config, items):
    if _postgres_available(config):
        return
    skip = pytest.mark.skip(reason="no PostgreSQL server or binaries for testsuite")
    for item in items:
        if item.get_closest_marker("postgres"):
            item.add_marker(skip)


@pytest.fixture(scope="session")
def pgsql_local(pgsql_local_create):
    databases = discover.find_schemas(
        service_name=None,
        schema_dirs=[PG_SCHEMAS_PATH],
    )
    return pgsql_local_create(list(databases.values()))


@pytest.fixture
async def db_pool(pgsql):
    """Pool on the test database with both services' migrations applied and tables empty."""
    conninfo = pgsql[PG_DBNAME].conninfo
    pool = await asyncpg.create_pool(dsn=conninfo.get_uri())
    try:
        await apply_migrations(pool, BROKER_MIGRATIONS, table="webhook_service_migrations")
        await apply_migrations(pool, SYNC_MIGRATIONS, table="webhook_sync_migrations")
        await pool.execute("TRUNCATE webhook_subscriptions, webhook_events, delivery_jobs")
        yield pool
    finally:
        await pool.close()


@dataclass
class Stores:
    subscriptions: Any
    events: Any
    jobs: Any


@pytest.fixture(params=STORE_BACKENDS)
def stores(request) -> Stores:
    """The same store protocols on each backend."""
    if request.param == "postgres":
        pool = request.getfixturevalue("db_pool")
        return Stores(PostgresSubscriptionStore(pool), PostgresEventStore(pool), PostgresJobStore(pool))
    return Stores(InMemorySubscriptionStore(), InMemoryEventStore(), InMemoryJobStore())


@dataclass
class Receiver:
    """Real HTTP endpoint standing in for a subscriber."""

    url: str = ""
    status: int = 200
    requests: list[tuple[dict[str, str], bytes]] = field(default_factory=list)

    @property
    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(raw) for _, raw in self.requests]


async def _start_receiver() -> tuple[Receiver, web.AppRunner]:
    receiver = Receiver()

    async def handler(request: web.Request) -> web.Response:
        raw = await request.read()
        receiver.requests.append(({k: v for k, v in request.headers.items()}, raw))
        return web.Response(status=receiver.status)

    app = web.Application()
    app.router.add_post("/hook", handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = site._server.sockets[0].getsockname()[1]  # type: ignore[union-attr]
    receiver.url = f"http://127.0.0.1:{port}/hook"
    return receiver, runner


@pytest.fixture
async def receiver():
    rec, runner = await _start_receiver()
    yield rec
    await runner.cleanup()


@pytest.fixture
async def receiver_factory():
    runners: list[web.AppRunner] = []

    async def make() -> Receiver:
        rec, runner = await _start_receiver()
        runners.append(runner)
        return rec

    yield make
    for runner in runners:
        await runner.cleanup()


@pytest.fixture
def subscription_store():
    return InMemorySubscriptionStore()


@pytest.fixture
def event_store():
    return InMemoryEventStore()


@pytest.fixture
async def broker_client(aiohttp_client, subscription_store, event_store):
    """Test client for the broker backed by in-memory stores."""
    app = create_broker_app(subscription_store=subscription_store, event_store=event_store)
    return await aiohttp_client(app)


@dataclass
class FakeCollaborators:
    """Programmable CRM and sink behind ``httpx.MockTransport``."""

    objects: dict[tuple[str, str], dict[str, Any]] = field(default_factory=dict)
    crm_status: int | None = None
    sink_status: int = 200
    crm_requests: list[httpx.Request] = field(default_factory=list)
    sink_requests: list[httpx.Request] = field(default_factory=list)

    @property
    def pushed(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.sink_requests]

    def crm_handler(self, request: httpx.Request) -> httpx.Response:
        self.crm_requests.append(request)
        if self.crm_status is not None:
            return httpx.Response(self.crm_status, json={"message": "crm says no"})
        *_, collection, object_id = request.url.path.split("/")
        obj = self.objects.get((collection, object_id))
        if obj is None:
            return httpx.Response(404, json={"message": "Object not found"})
        return httpx.Response(200, json=obj)

    def sink_handler(self, request: httpx.Request) -> httpx.Response:
        self.sink_requests.append(request)
        if self.sink_status >= 400:
            return httpx.Response(self.sink_status, json={"error": "sink unavailable"})
        body = json.loads(request.content)
        return httpx.Response(200, json={"status": "ok", "metricsProcessed": len(body["data"])})

    def crm_client(self) -> CrmClient:
        return CrmClient(base_url="http://crm.test", transport=httpx.MockTransport(self.crm_handler))

    def sink_client(self) -> SinkClient:
        return SinkClient(
            base_url="http://sink.test",
            api_token="sink-token",
            transport=httpx.MockTransport(self.sink_handler),
        )


@pytest.fixture
def collaborators() -> FakeCollaborators:
    return FakeCollaborators()


@pytest.fixture
def job_store():
    return InMemoryJobStore()


@pytest.fixture
def sync_config(monkeypatch):
    monkeypatch.setattr(sync_settings, "webhook_secret", SYNC_SECRET)
    monkeypatch.setattr(sync_settings, "webhook_verify_signature", True)
    monkeypatch.setattr(sync_settings, "broker_subscribe_on_startup", False)
    monkeypatch.setattr(sync_settings, "processing_delay_seconds", 1.0)
    monkeypatch.setattr(sync_settings, "coalesce_enabled", True)
    return sync_settings


@pytest.fixture
async def sync_client(aiohttp_client, sync_config, job_store, collaborators):
    """Consumer test client; the queue is drained explicitly through the worker pool."""
    app = create_sync_app(
        job_store=job_store,
        crm_client=collaborators.crm_client(),
        sink_client=collaborators.sink_client(),
        start_workers=False,
    )
    return await aiohttp_client(app)
