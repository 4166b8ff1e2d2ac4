"""Per-subscriber delivery health."""
from __future__ import annotations

from datetime import datetime, timezone

import structlog

from webhook_service import metrics
from webhook_service.domain.events import DeliveryOutcome
from webhook_service.domain.subscriptions import Subscription
from webhook_service.repositories.subscriptions import SubscriptionStore

logger = structlog.get_logger(__name__)


class SubscriberHealthTracker:
    """Sole owner of subscriber counters and of the ``active`` flag.

    Deactivation is one-way: a subscriber whose error count exceeds the
    threshold stays inactive until it registers again.
    """

    def __init__(self, store: SubscriptionStore, *, error_threshold: int = 10):
        self._store = store
        self._threshold = error_threshold

    async def record_success(self, subscription_id: str) -> Subscription | None:
        return await self._store.record_success(subscription_id, datetime.now(timezone.utc))

    async def record_failure(self, subscription_id: str) -> Subscription | None:
        updated = await self._store.record_failure(subscription_id, self._threshold)
        # error_count moves by exactly one per call, so this fires once per subscriber
        if updated is not None and updated.error_count == self._threshold + 1:
            metrics.subscribers_deactivated.inc()
            metrics.active_subscribers.dec()
            logger.warning(
                "Deactivated subscription due to repeated failures",
                subscription_id=subscription_id,
                url=updated.url,
                error_count=updated.error_count,
            )
        return updated

    async def apply(self, outcome: DeliveryOutcome) -> Subscription | None:
        if outcome.delivered:
            return await self.record_success(outcome.subscription_id)
        return await self.record_failure(outcome.subscription_id)
