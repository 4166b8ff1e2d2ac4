from __future__ import annotations

import pytest

from sync_common.signing import sign
from tests.utils import SYNC_SECRET

EVENT = {
    "eventId": "evt-api-1",
    "eventType": "company.propertyChange",
    "objectType": "COMPANY",
    "objectId": "1001",
    "properties": {"industry": "Retail"},
}


@pytest.mark.asyncio
async def test_health(broker_client):
    resp = await broker_client.get("/health")
    assert resp.status == 200
    assert "X-Trace-Id" in resp.headers
    body = await resp.json()
    assert body["status"] == "healthy"
    assert body["service"] == "webhook-service"
    assert body["subscribers"] == 0


@pytest.mark.asyncio
async def test_subscription_lifecycle(broker_client):
    resp = await broker_client.post(
        "/subscriptions",
        json={"url": "http://a.test/hook", "events": ["company"], "secret": "s3cret"},
    )
    assert resp.status == 201
    subscription_id = (await resp.json())["subscriptionId"]

    resp = await broker_client.get("/subscriptions")
    items = (await resp.json())["subscriptions"]
    assert [s["id"] for s in items] == [subscription_id]
    assert "secret" not in items[0]
    assert items[0]["active"] is True

    resp = await broker_client.get(f"/subscriptions/{subscription_id}")
    assert resp.status == 200

    resp = await broker_client.delete(f"/subscriptions/{subscription_id}")
    assert resp.status == 200
    resp = await broker_client.delete(f"/subscriptions/{subscription_id}")
    assert resp.status == 404
    assert (await resp.json())["error"] == "not_found"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"events": ["company"]},
        {"url": "http://a.test"},
        {"url": "http://a.test", "events": []},
    ],
)
async def test_subscription_validation(broker_client, payload):
    resp = await broker_client.post("/subscriptions", json=payload)
    assert resp.status == 400
    assert (await resp.json())["error"] == "validation_error"


@pytest.mark.asyncio
async def test_invalid_json_body(broker_client):
    resp = await broker_client.post("/webhook", data=b"not json", headers={"Content-Type": "application/json"})
    assert resp.status == 400


@pytest.mark.asyncio
async def test_webhook_fans_out_and_replays(broker_client, receiver):
    resp = await broker_client.post(
        "/subscriptions",
        json={"url": receiver.url, "events": ["company.propertyChange"], "secret": "s3cret"},
    )
    assert resp.status == 201

    resp = await broker_client.post("/webhook", json=EVENT)
    assert resp.status == 200
    body = await resp.json()
    assert body == {
        "message": "Webhook processed",
        "eventId": "evt-api-1",
        "notificationsSent": 1,
        "notificationsFailed": 0,
    }
    headers, raw = receiver.requests[0]
    assert headers["X-Webhook-Signature"] == sign("s3cret", raw)

    resp = await broker_client.post("/replay/evt-api-1")
    assert resp.status == 200
    assert len(receiver.requests) == 2
    assert receiver.bodies[0]["event"] == receiver.bodies[1]["event"]

    resp = await broker_client.post("/replay/unknown")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_webhook_rejects_missing_fields(broker_client):
    resp = await broker_client.post("/webhook", json={"eventType": "company.creation"})
    assert resp.status == 400
    message = (await resp.json())["message"]
    assert "objectType" in message and "objectId" in message


@pytest.mark.asyncio
async def test_stats(broker_client, receiver):
    receiver.status = 500
    await broker_client.post("/subscriptions", json={"url": receiver.url, "events": ["*"]})
    await broker_client.post("/webhook", json=EVENT)

    resp = await broker_client.get("/stats")
    stats = await resp.json()
    assert stats["totalEvents"] == 1
    assert stats["eventsByType"] == {"company.propertyChange": 1}
    assert stats["subscriptionStats"][0]["errorCount"] == 1


@pytest.mark.asyncio
async def test_broker_delivers_to_consumer(broker_client, sync_client, job_store):
    consumer_url = str(sync_client.make_url("/webhook"))
    resp = await broker_client.post(
        "/subscriptions",
        json={"url": consumer_url, "events": ["company.propertyChange"], "secret": SYNC_SECRET},
    )
    assert resp.status == 201

    resp = await broker_client.post("/webhook", json=EVENT)
    assert (await resp.json())["notificationsSent"] == 1

    jobs, total = await job_store.list()
    assert total == 1
    assert jobs[0].event_id == "evt-api-1"
    assert jobs[0].object_type == "COMPANY"
    assert jobs[0].properties == {"industry": "Retail"}
