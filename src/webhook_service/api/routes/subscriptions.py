"""Subscription registration endpoints."""
from __future__ import annotations

from aiohttp import web

from sync_common.aiohttp_app import read_json
from webhook_service.services.dependencies import get_registry

routes = web.RouteTableDef()


@routes.post("/subscriptions")
async def create_subscription(request: web.Request):
    body = await read_json(request)
    registry = get_registry(request)
    subscription = await registry.register(body.get("url"), body.get("events"), body.get("secret"))
    return web.json_response(
        {
            "subscriptionId": subscription.id,
            "message": "Webhook subscription created successfully",
        },
        status=201,
    )


@routes.get("/subscriptions")
async def list_subscriptions(request: web.Request):
    registry = get_registry(request)
    items = await registry.list()
    return web.json_response({"subscriptions": [item.to_public() for item in items]})


@routes.get("/subscriptions/{subscription_id}")
async def get_subscription(request: web.Request):
    registry = get_registry(request)
    subscription = await registry.get(request.match_info["subscription_id"])
    return web.json_response(subscription.to_public())


@routes.delete("/subscriptions/{subscription_id}")
async def delete_subscription(request: web.Request):
    registry = get_registry(request)
    await registry.deregister(request.match_info["subscription_id"])
    return web.json_response({"message": "Subscription deleted"})
