"""Service layer exports."""

from webhook_service.services.health import SubscriberHealthTracker
from webhook_service.services.publisher import EventPublisher
from webhook_service.services.registry import SubscriptionRegistry

__all__ = [
    "EventPublisher",
    "SubscriberHealthTracker",
    "SubscriptionRegistry",
]
