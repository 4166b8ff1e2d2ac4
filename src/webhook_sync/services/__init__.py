"""Service layer exports."""

from webhook_sync.services.intake import ConsumerIntake, IntakeResult
from webhook_sync.services.processor import JobProcessor
from webhook_sync.services.queue import JobQueue

__all__ = [
    "ConsumerIntake",
    "IntakeResult",
    "JobProcessor",
    "JobQueue",
]
