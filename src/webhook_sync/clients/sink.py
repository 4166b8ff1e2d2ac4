"""Analytics sink push client."""
from __future__ import annotations

from typing import Any

import httpx

from webhook_sync.clients.base import ApiClient

TOKEN_HEADER = "x-api-token"


class SinkClient(ApiClient):
    service = "sink"

    def __init__(
        self,
        *,
        base_url: str,
        api_token: str,
        timeout_s: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(
            base_url=base_url,
            timeout_s=timeout_s,
            headers={TOKEN_HEADER: api_token},
            transport=transport,
        )

    async def push(self, payload: dict[str, Any]) -> dict[str, Any]:
        resp = await self._request("POST", "/", json=payload)
        self._raise_for_status(resp)
        return resp.json() if resp.content else {}
