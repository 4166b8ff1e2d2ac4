"""Event publisher: records change events and fans them out to subscribers."""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Protocol

import structlog

from sync_common.exceptions import DeliveryError, NotFoundError
from sync_common.otel import get_tracer
from webhook_service import metrics
from webhook_service.domain.events import ChangeEvent, DeliveryOutcome, DeliveryReport
from webhook_service.domain.subscriptions import Subscription
from webhook_service.repositories.events import EventStore
from webhook_service.services.health import SubscriberHealthTracker
from webhook_service.services.registry import SubscriptionRegistry

logger = structlog.get_logger(__name__)
_tracer = get_tracer(__name__)


class Deliverer(Protocol):
    async def deliver(self, subscription: Subscription, event: ChangeEvent) -> DeliveryOutcome: ...


class EventPublisher:
    def __init__(
        self,
        registry: SubscriptionRegistry,
        events: EventStore,
        delivery: Deliverer,
        health: SubscriberHealthTracker,
        *,
        retention: timedelta = timedelta(hours=24),
    ):
        self._registry = registry
        self._events = events
        self._delivery = delivery
        self._health = health
        self._retention = retention

    async def publish(self, event: ChangeEvent | Mapping[str, Any]) -> DeliveryReport:
        """Record ``event`` and deliver it to every matching active subscriber.

        Waits for all deliveries to settle. Raises ``ValidationError`` for a
        malformed event; subscriber failures only show up in the report.
        """
        event = ChangeEvent.coerce(event)
        await self._events.append(event, datetime.now(timezone.utc))
        metrics.events_received.labels(event_type=event.event_type, object_type=event.object_type).inc()
        logger.info(
            "Received webhook",
            event_id=event.event_id,
            event_type=event.event_type,
            object_type=event.object_type,
            object_id=event.object_id,
        )
        return await self._fan_out(event)

    async def replay(self, event_id: str) -> DeliveryReport:
        """Fan out a retained event again through the same delivery path as ``publish``.

        The event is not appended to the store a second time and does not bump
        ``events_received``, so replays never inflate ``totalEvents`` or the
        per-type counts reported by ``stats``.
        """
        event = await self._events.get(event_id, recorded_after=self._retention_cutoff())
        if event is None:
            raise NotFoundError("Event not found")
        logger.info("Replaying event", event_id=event_id, event_type=event.event_type)
        return await self._fan_out(event)

    async def purge_expired(self, now: datetime | None = None) -> int:
        return await self._events.purge(self._retention_cutoff(now))

    async def stats(self) -> dict[str, Any]:
        subscriptions = await self._registry.list()
        by_type = await self._events.count_by_type(recorded_after=self._retention_cutoff())
        return {
            "totalSubscribers": len(subscriptions),
            "activeSubscribers": sum(1 for s in subscriptions if s.active),
            "totalEvents": sum(by_type.values()),
            "eventsByType": by_type,
            "subscriptionStats": [
                {
                    "id": s.id,
                    "url": s.url,
                    "events": s.events,
                    "successCount": s.success_count,
                    "errorCount": s.error_count,
                    "lastNotified": s.last_notified.isoformat() if s.last_notified else None,
                    "active": s.active,
                }
                for s in subscriptions
            ],
        }

    def _retention_cutoff(self, now: datetime | None = None) -> datetime:
        return (now or datetime.now(timezone.utc)) - self._retention

    async def _fan_out(self, event: ChangeEvent) -> DeliveryReport:
        started = time.monotonic()
        targets = await self._registry.matching(event)
        with _tracer.start_as_current_span(
            "fan_out", attributes={"event.id": event.event_id, "event.type": event.event_type, "targets": len(targets)}
        ):
            outcomes = await asyncio.gather(*(self._deliver_one(s, event) for s in targets))
        report = DeliveryReport(event_id=event.event_id, outcomes=list(outcomes))
        metrics.processing_duration.labels(event_type=event.event_type).observe(time.monotonic() - started)
        logger.info(
            "Fan-out complete",
            event_id=event.event_id,
            matched=len(targets),
            succeeded=report.succeeded,
            failed=report.failed,
        )
        return report

    async def _deliver_one(self, subscription: Subscription, event: ChangeEvent) -> DeliveryOutcome:
        try:
            outcome = await self._delivery.deliver(subscription, event)
        except Exception as exc:
            # a broken delivery must not take its siblings down with it
            logger.exception("Delivery raised unexpectedly", subscription_id=subscription.id)
            outcome = DeliveryOutcome(
                subscription_id=subscription.id,
                error=DeliveryError(f"{type(exc).__name__}: {exc}"),
            )
        metrics.deliveries.labels(outcome="delivered" if outcome.delivered else "failed").inc()
        await self._health.apply(outcome)
        return outcome
