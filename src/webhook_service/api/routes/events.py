"""Event ingress and replay endpoints."""
from __future__ import annotations

from aiohttp import web

from sync_common.aiohttp_app import read_json
from webhook_service.services.dependencies import get_publisher

routes = web.RouteTableDef()


@routes.post("/webhook")
async def ingest_event(request: web.Request):
    body = await read_json(request)
    report = await get_publisher(request).publish(body)
    return web.json_response(report.to_response())


@routes.post("/replay/{event_id}")
async def replay_event(request: web.Request):
    report = await get_publisher(request).replay(request.match_info["event_id"])
    return web.json_response(report.to_response())
