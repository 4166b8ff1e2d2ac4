from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from sync_common.exceptions import AuthError, ValidationError
from sync_common.signing import sign
from webhook_sync.domain.jobs import JobStatus
from webhook_sync.repositories import InMemoryJobStore
from webhook_sync.services import ConsumerIntake
from tests.utils import SYNC_SECRET, company_event, envelope, signed

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def intake(store) -> ConsumerIntake:
    return ConsumerIntake(store, secret=SYNC_SECRET, processing_delay=timedelta(seconds=1))


@pytest.mark.asyncio
async def test_ingest_enqueues_delayed_job(intake, store):
    body, headers = signed(envelope(company_event("1001")))

    result = await intake.ingest(body, headers["X-Webhook-Signature"], now=NOW)

    assert result.event_id == "evt-1001"
    assert result.coalesced is False
    job = await store.get(result.job_id)
    assert job.status == JobStatus.PENDING
    assert job.visible_at == NOW + timedelta(seconds=1)
    assert job.properties == {"name": "Acme", "industry": "Software"}
    assert job.max_attempts == 3


@pytest.mark.asyncio
async def test_ingest_accepts_bare_event(intake, store):
    body, headers = signed(company_event("55"))
    result = await intake.ingest(body, headers["X-Webhook-Signature"], now=NOW)
    assert (await store.get(result.job_id)).object_id == "55"


@pytest.mark.asyncio
@pytest.mark.parametrize("signature", [None, "", "v1=deadbeef", "garbage"])
async def test_ingest_rejects_bad_signature(intake, store, signature):
    body, _ = signed(envelope(company_event()))
    with pytest.raises(AuthError):
        await intake.ingest(body, signature, now=NOW)
    assert (await store.counts())["pending"] == 0


@pytest.mark.asyncio
async def test_signature_over_other_bytes_is_rejected(intake):
    body, headers = signed(envelope(company_event()))
    reformatted = json.dumps(json.loads(body), indent=2).encode()
    with pytest.raises(AuthError):
        await intake.ingest(reformatted, headers["X-Webhook-Signature"], now=NOW)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        envelope({"eventType": "company.creation", "objectType": "COMPANY"}),
        envelope({"eventType": "", "objectType": "COMPANY", "objectId": "1"}),
        {"subscriptionId": "s", "timestamp": 1},
    ],
)
async def test_ingest_rejects_malformed_event(intake, payload):
    body, headers = signed(payload)
    with pytest.raises(ValidationError):
        await intake.ingest(body, headers["X-Webhook-Signature"], now=NOW)


@pytest.mark.asyncio
async def test_ingest_rejects_non_json(intake):
    raw = b"not json"
    with pytest.raises(ValidationError):
        await intake.ingest(raw, sign(SYNC_SECRET, raw), now=NOW)


@pytest.mark.asyncio
async def test_verification_can_be_disabled(store):
    intake = ConsumerIntake(store, secret=SYNC_SECRET, verify_signature=False)
    body, _ = signed(envelope(company_event()))
    result = await intake.ingest(body, None, now=NOW)
    assert result.job_id


@pytest.mark.asyncio
async def test_rapid_events_for_one_object_coalesce(intake, store):
    first_body, first_headers = signed(envelope(company_event("7", properties={"name": "A"})))
    second_body, second_headers = signed(
        envelope(company_event("7", eventId="evt-b", properties={"industry": "B"}))
    )

    first = await intake.ingest(first_body, first_headers["X-Webhook-Signature"], now=NOW)
    second = await intake.ingest(
        second_body, second_headers["X-Webhook-Signature"], now=NOW + timedelta(milliseconds=300)
    )

    assert second.coalesced is True
    assert second.job_id == first.job_id
    job = await store.get(first.job_id)
    assert job.properties == {"name": "A", "industry": "B"}
    assert job.coalesced_count == 1


@pytest.mark.asyncio
async def test_backfill_queues_fetch_jobs(intake, store):
    queued = await intake.backfill("company", ["1", "2", 3, "2"], now=NOW)

    assert queued == 3
    items, total = await store.list()
    assert total == 3
    assert {j.object_id for j in items} == {"1", "2", "3"}
    assert all(j.properties is None and j.event_type == "company.propertyChange" for j in items)
    assert all(j.visible_at == NOW for j in items)


@pytest.mark.asyncio
@pytest.mark.parametrize("object_type,ids", [("", ["1"]), ("company", []), ("company", ["  "])])
async def test_backfill_validation(intake, object_type, ids):
    with pytest.raises(ValidationError):
        await intake.backfill(object_type, ids)


@pytest.mark.asyncio
async def test_backfill_merges_into_pending_webhook_job(intake, store):
    body, headers = signed(envelope(company_event("42")))
    webhook = await intake.ingest(body, headers["X-Webhook-Signature"], now=NOW)

    assert await intake.backfill("companies", ["42"], now=NOW + timedelta(milliseconds=200)) == 1

    counts = await store.counts()
    assert counts["pending"] == 1
    job = await store.get(webhook.job_id)
    assert job.coalesced_count == 1
    # backfill carries no properties, so the worker fetches full state
    assert job.properties is None
