from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from webhook_sync.domain.jobs import JobStatus
from webhook_sync.main import WORKER_POOL_KEY
from tests.utils import company_event, envelope, signed

SOON = datetime.now(timezone.utc) + timedelta(hours=1)


@pytest.mark.asyncio
async def test_health(sync_client):
    resp = await sync_client.get("/health")
    assert resp.status == 200
    body = await resp.json()
    assert body["status"] == "healthy"
    assert body["service"] == "webhook-sync"
    assert body["workers"] == 0


@pytest.mark.asyncio
async def test_webhook_accepts_signed_envelope(sync_client, job_store):
    body, headers = signed(envelope(company_event("1001")))

    resp = await sync_client.post("/webhook", data=body, headers=headers)

    assert resp.status == 200
    payload = await resp.json()
    assert payload["message"] == "Webhook received"
    assert payload["eventId"] == "evt-1001"
    assert payload["coalesced"] is False
    job = await job_store.get(payload["jobId"])
    assert job.status == JobStatus.PENDING


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(sync_client, job_store):
    body, headers = signed(envelope(company_event()), secret="wrong-secret")

    resp = await sync_client.post("/webhook", data=body, headers=headers)

    assert resp.status == 401
    assert (await resp.json())["error"] == "unauthorized"
    assert (await job_store.counts())["pending"] == 0


@pytest.mark.asyncio
async def test_webhook_rejects_malformed_event(sync_client):
    body, headers = signed(envelope({"eventType": "company.creation"}))
    resp = await sync_client.post("/webhook", data=body, headers=headers)
    assert resp.status == 400


@pytest.mark.asyncio
async def test_webhook_to_sink(sync_client, collaborators):
    body, headers = signed(envelope(company_event("1001")))
    await sync_client.post("/webhook", data=body, headers=headers)

    outcomes = await sync_client.app[WORKER_POOL_KEY].run_once(SOON)

    assert outcomes == ["done"]
    [payload] = collaborators.pushed
    assert payload["data"][0]["objectId"] == "1001"
    assert payload["data"][0]["$companies_updated"] == 1


@pytest.mark.asyncio
async def test_backfill_and_job_listing(sync_client, collaborators):
    collaborators.objects[("contacts", "1")] = {"id": "1", "properties": {"firstname": "Ada", "lastname": "L"}}

    resp = await sync_client.post("/sync/backfill", json={"objectType": "contact", "objectIds": ["1", "2"]})
    assert resp.status == 202
    assert (await resp.json()) == {"queued": 2}

    resp = await sync_client.get("/jobs", params={"status": "pending"})
    listing = await resp.json()
    assert listing["total"] == 2

    outcomes = await sync_client.app[WORKER_POOL_KEY].run_once(SOON)
    assert sorted(outcomes) == ["done", "skipped"]
    assert collaborators.pushed[0]["data"][0]["contact_name"] == "Ada L"

    resp = await sync_client.get("/stats")
    stats = await resp.json()
    assert stats["jobs"]["done"] == 2
    assert stats["totalJobs"] == 2


@pytest.mark.asyncio
async def test_backfill_validation(sync_client):
    resp = await sync_client.post("/sync/backfill", json={"objectType": "contact", "objectIds": "1"})
    assert resp.status == 400


@pytest.mark.asyncio
async def test_jobs_rejects_unknown_status(sync_client):
    resp = await sync_client.get("/jobs", params={"status": "bogus"})
    assert resp.status == 400


@pytest.mark.asyncio
async def test_retry_failed_job(sync_client, collaborators, job_store):
    collaborators.sink_status = 500
    body, headers = signed(envelope(company_event("9")))
    resp = await sync_client.post("/webhook", data=body, headers=headers)
    job_id = (await resp.json())["jobId"]

    pool = sync_client.app[WORKER_POOL_KEY]
    assert await pool.run_once(SOON) == ["retry", "retry", "failed"]

    resp = await sync_client.get(f"/jobs/{job_id}")
    assert (await resp.json())["status"] == "failed"

    collaborators.sink_status = 200
    resp = await sync_client.post(f"/jobs/{job_id}/retry")
    assert resp.status == 200
    assert (await resp.json())["attemptCount"] == 0

    assert await pool.run_once(SOON) == ["done"]

    resp = await sync_client.post(f"/jobs/{job_id}/retry")
    assert resp.status == 409
    resp = await sync_client.post("/jobs/missing/retry")
    assert resp.status == 404
