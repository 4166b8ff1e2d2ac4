"""Signed HTTP delivery of change events to subscribers."""
from __future__ import annotations

import asyncio
import time
from typing import Any

import structlog
from aiohttp import ClientError, ClientSession, ClientTimeout

from sync_common.exceptions import DeliveryError
from sync_common.signing import SIGNATURE_HEADER, canonical_body, sign
from webhook_service.domain.events import ChangeEvent, DeliveryOutcome
from webhook_service.domain.subscriptions import Subscription

logger = structlog.get_logger(__name__)

EVENT_HEADER = "X-Webhook-Event"
SUBSCRIPTION_HEADER = "X-Webhook-Subscription-Id"


def build_payload(subscription: Subscription, event: ChangeEvent, *, timestamp_ms: int) -> dict[str, Any]:
    return {
        "subscriptionId": subscription.id,
        "event": event.to_payload(),
        "timestamp": timestamp_ms,
    }


class DeliveryClient:
    """One POST per call, no retries.

    Any status below 500 counts as delivered: a 4xx is the subscriber rejecting
    the event for good. Timeouts, connection errors and 5xx come back as a
    :class:`DeliveryError` inside the outcome rather than being raised.
    """

    def __init__(self, *, timeout_seconds: float = 30.0, session: ClientSession | None = None):
        self._timeout = ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def start(self) -> None:
        if self._session is None:
            self._session = ClientSession(timeout=self._timeout)

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def deliver(self, subscription: Subscription, event: ChangeEvent) -> DeliveryOutcome:
        if self._session is None:
            raise RuntimeError("DeliveryClient is not started")

        body = canonical_body(build_payload(subscription, event, timestamp_ms=int(time.time() * 1000)))
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign(subscription.secret, body),
            EVENT_HEADER: event.event_type,
            SUBSCRIPTION_HEADER: subscription.id,
        }
        started = time.monotonic()
        try:
            async with self._session.post(
                subscription.url, data=body, headers=headers, timeout=self._timeout
            ) as resp:
                status = resp.status
                if status >= 500:
                    text = await resp.text()
                    error = DeliveryError(f"HTTP {status}: {text[:500]}", status=status)
                    return self._outcome(subscription, started, status=status, error=error)
        except asyncio.TimeoutError:
            error = DeliveryError(f"Timed out after {self._timeout.total}s")
            return self._outcome(subscription, started, error=error)
        except ClientError as exc:
            error = DeliveryError(f"{type(exc).__name__}: {exc}")
            return self._outcome(subscription, started, error=error)

        return self._outcome(subscription, started, status=status)

    @staticmethod
    def _outcome(
        subscription: Subscription,
        started: float,
        *,
        status: int | None = None,
        error: DeliveryError | None = None,
    ) -> DeliveryOutcome:
        duration_ms = round((time.monotonic() - started) * 1000, 2)
        if error is None:
            logger.info(
                "Notified subscriber",
                subscription_id=subscription.id,
                url=subscription.url,
                status=status,
                duration_ms=duration_ms,
            )
        else:
            logger.warning(
                "Failed to notify subscriber",
                subscription_id=subscription.id,
                url=subscription.url,
                status=status,
                error=str(error),
                duration_ms=duration_ms,
            )
        return DeliveryOutcome(
            subscription_id=subscription.id, status=status, error=error, duration_ms=duration_ms
        )
