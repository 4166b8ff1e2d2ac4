"""Repository package exports."""

from webhook_sync.repositories.jobs import InMemoryJobStore, JobStore, PostgresJobStore

__all__ = [
    "JobStore",
    "InMemoryJobStore",
    "PostgresJobStore",
]
