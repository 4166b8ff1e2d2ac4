"""Backfill trigger."""
from __future__ import annotations

from aiohttp import web

from sync_common.aiohttp_app import read_json
from sync_common.exceptions import ValidationError
from webhook_sync.services.dependencies import get_intake

routes = web.RouteTableDef()


@routes.post("/sync/backfill")
async def backfill(request: web.Request):
    body = await read_json(request)
    object_ids = body.get("objectIds")
    if not isinstance(object_ids, list):
        raise ValidationError("objectIds must be a list")
    queued = await get_intake(request).backfill(str(body.get("objectType") or ""), object_ids)
    return web.json_response({"queued": queued}, status=202)
