"""API router composition for aiohttp."""
from __future__ import annotations

from aiohttp import web

from webhook_sync.api.routes import jobs, stats, sync, webhook

ROUTE_MODULES = [
    webhook,
    sync,
    jobs,
    stats,
]


def setup_routes(app: web.Application) -> None:
    """Attach domain routes to the aiohttp application."""
    for module in ROUTE_MODULES:
        app.add_routes(module.routes)
