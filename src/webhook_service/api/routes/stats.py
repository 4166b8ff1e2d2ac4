"""Read-only statistics."""
from __future__ import annotations

from aiohttp import web

from webhook_service.services.dependencies import get_publisher

routes = web.RouteTableDef()


@routes.get("/stats")
async def stats(request: web.Request):
    return web.json_response(await get_publisher(request).stats())
