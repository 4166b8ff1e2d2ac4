from __future__ import annotations

import asyncio
import random
from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import REGISTRY

from sync_common.exceptions import DeliveryError, NotFoundError, ValidationError
from webhook_service.delivery import DeliveryClient
from webhook_service.domain.events import DeliveryOutcome
from webhook_service.services import EventPublisher, SubscriberHealthTracker, SubscriptionRegistry

EVENT = {"eventType": "company.propertyChange", "objectType": "COMPANY", "objectId": "42"}
LABELS = {"event_type": "company.propertyChange", "object_type": "COMPANY"}


class RecordingDeliverer:
    """Deliverer double: fails for the configured urls, records every attempt."""

    def __init__(self, failing: set[str] | None = None, flaky: dict[str, float] | None = None, seed: int = 7):
        self.failing = failing or set()
        self.flaky = flaky or {}
        self.attempts: list[tuple[str, str]] = []
        self.failures: dict[str, int] = {}
        self._random = random.Random(seed)

    async def deliver(self, subscription, event):
        self.attempts.append((subscription.id, event.event_id))
        await asyncio.sleep(0)
        failed = subscription.url in self.failing or (
            subscription.url in self.flaky and self._random.random() < self.flaky[subscription.url]
        )
        if failed:
            self.failures[subscription.id] = self.failures.get(subscription.id, 0) + 1
            return DeliveryOutcome(subscription_id=subscription.id, error=DeliveryError("boom"))
        return DeliveryOutcome(subscription_id=subscription.id, status=200)


def _publisher(stores, deliverer, *, threshold: int = 10):
    store = stores.subscriptions
    registry = SubscriptionRegistry(store, default_secret="fallback")
    events = stores.events
    health = SubscriberHealthTracker(store, error_threshold=threshold)
    return EventPublisher(registry, events, deliverer, health), registry, store


@pytest.mark.asyncio
async def test_publish_reports_partial_failure(stores):
    deliverer = RecordingDeliverer(failing={"http://down.test"})
    publisher, registry, _ = _publisher(stores, deliverer)
    await registry.register("http://a.test", ["company"])
    await registry.register("http://b.test", ["company.propertyChange"])
    await registry.register("http://down.test", ["*"])

    report = await publisher.publish(EVENT)

    assert report.succeeded == 2
    assert report.failed == 1
    assert report.to_response()["notificationsSent"] == 2
    assert report.to_response()["notificationsFailed"] == 1


@pytest.mark.asyncio
async def test_overlapping_patterns_deliver_once(stores):
    deliverer = RecordingDeliverer()
    publisher, registry, _ = _publisher(stores, deliverer)
    sub = await registry.register("http://a.test", ["*", "company", "company.propertyChange"])

    await publisher.publish(EVENT)

    assert deliverer.attempts == [(sub.id, deliverer.attempts[0][1])]


@pytest.mark.asyncio
async def test_publish_without_subscribers_still_records(stores):
    publisher, _, _ = _publisher(stores, RecordingDeliverer())
    report = await publisher.publish({**EVENT, "eventId": "evt-1"})

    assert report.succeeded == report.failed == 0
    assert (await publisher.stats())["totalEvents"] == 1


@pytest.mark.asyncio
async def test_publish_rejects_malformed_event(stores):
    publisher, _, _ = _publisher(stores, RecordingDeliverer())
    with pytest.raises(ValidationError):
        await publisher.publish({"eventType": "company.creation", "objectType": "COMPANY"})
    assert (await publisher.stats())["totalEvents"] == 0


@pytest.mark.asyncio
async def test_replay_redelivers_identical_event(stores):
    deliverer = RecordingDeliverer()
    publisher, registry, _ = _publisher(stores, deliverer)
    await registry.register("http://a.test", ["company"])

    first = await publisher.publish({**EVENT, "eventId": "evt-replay"})
    received = REGISTRY.get_sample_value("webhook_events_total", LABELS)
    second = await publisher.replay("evt-replay")

    assert first.event_id == second.event_id == "evt-replay"
    assert [event_id for _, event_id in deliverer.attempts] == ["evt-replay", "evt-replay"]
    # replay does not record the event again
    assert (await publisher.stats())["totalEvents"] == 1
    assert REGISTRY.get_sample_value("webhook_events_total", LABELS) == received


@pytest.mark.asyncio
async def test_replay_unknown_event(stores):
    publisher, _, _ = _publisher(stores, RecordingDeliverer())
    with pytest.raises(NotFoundError):
        await publisher.replay("nope")


@pytest.mark.asyncio
async def test_subscriber_deactivated_after_threshold(stores):
    deliverer = RecordingDeliverer(failing={"http://down.test"})
    publisher, registry, store = _publisher(stores, deliverer, threshold=10)
    sub = await registry.register("http://down.test", ["*"])

    for i in range(11):
        await publisher.publish({**EVENT, "eventId": f"evt-{i}"})
    after = await store.get(sub.id)
    assert after.error_count == 11
    assert after.active is False

    await publisher.publish({**EVENT, "eventId": "evt-late"})
    assert len(deliverer.attempts) == 11


@pytest.mark.asyncio
async def test_deliverer_exception_is_isolated(stores):
    class ExplodingDeliverer(RecordingDeliverer):
        async def deliver(self, subscription, event):
            if subscription.url == "http://bad.test":
                raise RuntimeError("unexpected")
            return await super().deliver(subscription, event)

    publisher, registry, store = _publisher(stores, ExplodingDeliverer())
    ok = await registry.register("http://ok.test", ["*"])
    bad = await registry.register("http://bad.test", ["*"])

    report = await publisher.publish(EVENT)

    assert report.succeeded == 1 and report.failed == 1
    assert (await store.get(ok.id)).success_count == 1
    assert (await store.get(bad.id)).error_count == 1


@pytest.mark.asyncio
async def test_concurrent_publishing_keeps_counters_exact(stores):
    deliverer = RecordingDeliverer(flaky={"http://flaky.test": 0.5})
    publisher, registry, store = _publisher(stores, deliverer, threshold=1000)
    urls = [f"http://s{i}.test" for i in range(4)] + ["http://flaky.test"]
    subs = [await registry.register(url, ["*"]) for url in urls]

    await asyncio.gather(*(publisher.publish({**EVENT, "eventId": f"evt-{i}"}) for i in range(100)))

    for sub in subs:
        current = await store.get(sub.id)
        failures = deliverer.failures.get(sub.id, 0)
        assert current.error_count == failures
        assert current.success_count == 100 - failures
    flaky = await store.get(subs[-1].id)
    assert 0 < flaky.error_count < 100


@pytest.mark.asyncio
async def test_stats_shape(stores):
    publisher, registry, _ = _publisher(stores, RecordingDeliverer())
    await registry.register("http://a.test", ["company"])
    await publisher.publish(EVENT)
    await publisher.publish({**EVENT, "eventType": "company.creation"})

    stats = await publisher.stats()
    assert stats["totalSubscribers"] == 1
    assert stats["activeSubscribers"] == 1
    assert stats["eventsByType"] == {"company.propertyChange": 1, "company.creation": 1}
    assert stats["subscriptionStats"][0]["successCount"] == 2


@pytest.mark.asyncio
async def test_delivery_client_must_be_started(stores):
    client = DeliveryClient()
    publisher, registry, store = _publisher(stores, client)
    sub = await registry.register("http://a.test", ["*"])

    # the publisher converts the RuntimeError into a failed outcome
    report = await publisher.publish(EVENT)
    assert report.failed == 1
    assert (await store.get(sub.id)).error_count == 1


@pytest.mark.asyncio
async def test_purge_expired_respects_retention(stores):
    publisher, _, _ = _publisher(stores, RecordingDeliverer())
    await publisher.publish({**EVENT, "eventId": "old"})

    assert await publisher.purge_expired() == 0
    later = datetime.now(timezone.utc) + timedelta(hours=25)
    assert await publisher.purge_expired(later) == 1
    with pytest.raises(NotFoundError):
        await publisher.replay("old")
