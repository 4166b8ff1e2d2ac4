"""Application-scoped service lookup for aiohttp handlers."""
from __future__ import annotations

from aiohttp import web

from webhook_service.services.publisher import EventPublisher
from webhook_service.services.registry import SubscriptionRegistry

REGISTRY_KEY = "subscription_registry"
PUBLISHER_KEY = "event_publisher"


def get_registry(request: web.Request) -> SubscriptionRegistry:
    return request.app[REGISTRY_KEY]


def get_publisher(request: web.Request) -> EventPublisher:
    return request.app[PUBLISHER_KEY]
