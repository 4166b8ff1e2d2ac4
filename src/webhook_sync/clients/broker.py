"""Self-registration with the webhook broker."""
from __future__ import annotations

import httpx
import structlog

from webhook_sync.clients.base import ApiClient

logger = structlog.get_logger(__name__)


class BrokerClient(ApiClient):
    service = "broker"

    def __init__(
        self,
        *,
        base_url: str,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url=base_url, timeout_s=timeout_s, transport=transport)

    async def subscribe(self, *, url: str, events: list[str], secret: str) -> str:
        resp = await self._request(
            "POST", "/subscriptions", json={"url": url, "events": events, "secret": secret}
        )
        self._raise_for_status(resp)
        subscription_id = resp.json()["subscriptionId"]
        logger.info("Subscribed to broker", subscription_id=subscription_id, events=events, url=url)
        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> bool:
        resp = await self._request("DELETE", f"/subscriptions/{subscription_id}")
        if resp.status_code == 404:
            logger.warning("Broker subscription already gone", subscription_id=subscription_id)
            return False
        self._raise_for_status(resp)
        logger.info("Unsubscribed from broker", subscription_id=subscription_id)
        return True
