"""Prometheus instruments for the sync consumer."""
from __future__ import annotations

from prometheus_client import Counter, Histogram

events_received = Counter(
    "webhook_sync_events_total",
    "Webhook events accepted by the consumer",
    ["event_type", "object_type", "coalesced"],
)

jobs = Counter(
    "webhook_sync_jobs_total",
    "Job attempts by outcome",
    ["outcome"],
)

jobs_failed = Counter(
    "webhook_sync_jobs_failed_total",
    "Jobs that ended in the failed state",
    ["reason"],
)

api_requests = Counter(
    "webhook_sync_api_requests_total",
    "Calls to collaborator APIs",
    ["service", "status"],
)

processing_duration = Histogram(
    "webhook_sync_processing_duration_seconds",
    "Duration of one job attempt",
    ["collection"],
)
