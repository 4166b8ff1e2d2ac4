"""CRM object API client."""
from __future__ import annotations

from typing import Any

import httpx
import structlog

from webhook_sync.clients.base import ApiClient
from webhook_sync.services.transform import COLLECTION_PROPERTIES

logger = structlog.get_logger(__name__)


class CrmClient(ApiClient):
    service = "crm"

    def __init__(
        self,
        *,
        base_url: str,
        objects_path: str = "/crm/v3/objects",
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url=base_url, timeout_s=timeout_s, transport=transport)
        self._objects_path = "/" + objects_path.strip("/")

    async def fetch(self, collection: str, object_id: str) -> dict[str, Any] | None:
        """Current state of one object, or ``None`` when the CRM no longer has it."""
        params = {}
        wanted = COLLECTION_PROPERTIES.get(collection)
        if wanted:
            params["properties"] = ",".join(wanted)
        resp = await self._request("GET", f"{self._objects_path}/{collection}/{object_id}", params=params)
        if resp.status_code == 404:
            logger.warning("CRM object not found (may be deleted)", collection=collection, object_id=object_id)
            return None
        self._raise_for_status(resp)
        return resp.json()
