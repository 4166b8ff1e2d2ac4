"""Repository package exports."""

from webhook_service.repositories.events import EventStore, InMemoryEventStore, PostgresEventStore
from webhook_service.repositories.subscriptions import (
    InMemorySubscriptionStore,
    PostgresSubscriptionStore,
    SubscriptionStore,
)

__all__ = [
    "EventStore",
    "InMemoryEventStore",
    "PostgresEventStore",
    "SubscriptionStore",
    "InMemorySubscriptionStore",
    "PostgresSubscriptionStore",
]
