"""Signed webhook intake."""
from __future__ import annotations

from aiohttp import web

from sync_common.signing import SIGNATURE_HEADER
from webhook_sync.services.dependencies import get_intake

routes = web.RouteTableDef()


@routes.post("/webhook")
async def receive_webhook(request: web.Request):
    # the signature covers the exact bytes received, so never re-serialise
    raw_body = await request.read()
    result = await get_intake(request).ingest(raw_body, request.headers.get(SIGNATURE_HEADER))
    return web.json_response(result.to_response())
