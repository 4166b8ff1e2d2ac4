"""Subscription registry."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import structlog

from sync_common.exceptions import NotFoundError, ValidationError
from webhook_service import metrics
from webhook_service.domain.events import ChangeEvent
from webhook_service.domain.matching import matches_any
from webhook_service.domain.subscriptions import Subscription
from webhook_service.repositories.subscriptions import SubscriptionStore

logger = structlog.get_logger(__name__)


def normalize_patterns(events: Any) -> list[str]:
    if not isinstance(events, list) or not events:
        raise ValidationError("Missing required fields: url, events (array)")
    if not all(isinstance(e, str) for e in events):
        raise ValidationError("events must be a list of strings")
    patterns = list(dict.fromkeys(e.strip() for e in events if e.strip()))
    if not patterns:
        raise ValidationError("events must contain at least one non-empty pattern")
    return patterns


class SubscriptionRegistry:
    def __init__(self, store: SubscriptionStore, *, default_secret: str):
        self._store = store
        self._default_secret = default_secret

    async def register(self, url: Any, events: Any, secret: str | None = None) -> Subscription:
        if not isinstance(url, str) or not url.strip():
            raise ValidationError("Missing required fields: url, events (array)")
        patterns = normalize_patterns(events)
        if secret is not None and not isinstance(secret, str):
            raise ValidationError("secret must be a string")

        subscription = Subscription(
            id=str(uuid4()),
            url=url.strip(),
            events=patterns,
            secret=secret or self._default_secret,
            created_at=datetime.now(timezone.utc),
        )
        await self._store.put(subscription)
        await self.refresh_gauge()
        logger.info(
            "Subscription registered",
            subscription_id=subscription.id,
            url=subscription.url,
            events=patterns,
            default_secret=not secret,
        )
        return subscription

    async def list(self) -> list[Subscription]:
        return await self._store.list()

    async def get(self, subscription_id: str) -> Subscription:
        subscription = await self._store.get(subscription_id)
        if subscription is None:
            raise NotFoundError("Subscription not found")
        return subscription

    async def deregister(self, subscription_id: str) -> None:
        if not await self._store.delete(subscription_id):
            raise NotFoundError("Subscription not found")
        await self.refresh_gauge()
        logger.info("Subscription deleted", subscription_id=subscription_id)

    @staticmethod
    def matches(subscription: Subscription, event: ChangeEvent) -> bool:
        return subscription.active and matches_any(subscription.events, event)

    async def matching(self, event: ChangeEvent) -> list[Subscription]:
        return [s for s in await self._store.list() if self.matches(s, event)]

    async def refresh_gauge(self) -> None:
        subscriptions = await self._store.list()
        metrics.active_subscribers.set(sum(1 for s in subscriptions if s.active))
