"""Prometheus instruments for the broker."""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

events_received = Counter(
    "webhook_events_total",
    "Total number of webhook events received",
    ["event_type", "object_type"],
)

deliveries = Counter(
    "webhook_deliveries_total",
    "Delivery attempts to subscribers by outcome",
    ["outcome"],
)

processing_duration = Histogram(
    "webhook_processing_duration_seconds",
    "Duration of a publish / replay fan-out",
    ["event_type"],
)

subscribers_deactivated = Counter(
    "webhook_subscribers_deactivated_total",
    "Subscriptions deactivated after repeated delivery failures",
)

active_subscribers = Gauge(
    "webhook_subscribers_active",
    "Number of active webhook subscribers",
)
