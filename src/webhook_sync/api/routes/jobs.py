"""Job inspection and operator retry."""
from __future__ import annotations

from aiohttp import web

from sync_common.aiohttp_app import pagination_params
from webhook_sync.services.dependencies import get_queue
from webhook_sync.services.queue import job_to_response

routes = web.RouteTableDef()


@routes.get("/jobs")
async def list_jobs(request: web.Request):
    limit, offset = pagination_params(request)
    items, total = await get_queue(request).list(
        status=request.rel_url.query.get("status"), limit=limit, offset=offset
    )
    return web.json_response(
        {"jobs": [job_to_response(j) for j in items], "total": total, "limit": limit, "offset": offset}
    )


@routes.get("/jobs/{job_id}")
async def get_job(request: web.Request):
    job = await get_queue(request).get(request.match_info["job_id"])
    return web.json_response(job_to_response(job))


@routes.post("/jobs/{job_id}/retry")
async def retry_job(request: web.Request):
    job = await get_queue(request).retry(request.match_info["job_id"])
    return web.json_response(job_to_response(job))
