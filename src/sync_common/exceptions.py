"""Error taxonomy shared by the broker and the consumer."""
from __future__ import annotations


class SyncError(Exception):
    """Base error for the sync pipeline."""

    status_code = 500
    error = "internal_error"


class ValidationError(SyncError):
    """Malformed input. Surfaced as 400 and never retried."""

    status_code = 400
    error = "validation_error"


class NotFoundError(SyncError):
    """Requested entity is missing or expired."""

    status_code = 404
    error = "not_found"


class AuthError(SyncError):
    """Missing or invalid token / webhook signature. Not retried."""

    status_code = 401
    error = "unauthorized"


class DeliveryError(SyncError):
    """Transient failure talking to a remote party (network, timeout, 5xx)."""

    status_code = 502
    error = "delivery_failed"

    def __init__(self, message: str, *, status: int | None = None):
        super().__init__(message)
        self.status = status


class ExhaustedRetriesError(SyncError):
    """A job used up all of its attempts and was moved to ``failed``."""

    error = "retries_exhausted"

    def __init__(self, job_id: str, attempts: int, last_error: str | None):
        super().__init__(f"Job {job_id} failed after {attempts} attempt(s): {last_error}")
        self.job_id = job_id
        self.attempts = attempts
        self.last_error = last_error


class InvalidJobTransitionError(SyncError):
    """Raised when a job attempts an unsupported status change."""

    status_code = 409
    error = "invalid_transition"
