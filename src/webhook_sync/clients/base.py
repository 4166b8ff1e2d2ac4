"""Shared httpx plumbing for collaborator APIs."""
from __future__ import annotations

from typing import Any

import httpx
import structlog

from sync_common.exceptions import AuthError, DeliveryError, ValidationError
from webhook_sync import metrics

logger = structlog.get_logger(__name__)


class ApiClient:
    """Owns one ``httpx.AsyncClient``; start/close with the app or use ``async with``.

    Responses are mapped onto the error taxonomy the job processor understands:
    transport errors, timeouts, 429 and 5xx raise :class:`DeliveryError`
    (retried), 401/403 raise :class:`AuthError` and any other 4xx raises
    :class:`ValidationError` (both terminal).
    """

    service = "api"

    def __init__(
        self,
        *,
        base_url: str,
        timeout_s: float,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._headers = headers or {}
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout_s, headers=self._headers, transport=self._transport
            )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if not self._client:
            raise RuntimeError(f"{type(self).__name__} is not started")
        url = f"{self._base_url}{path}"
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            metrics.api_requests.labels(service=self.service, status="timeout").inc()
            raise DeliveryError(f"{self.service} timed out after {self._timeout_s}s") from exc
        except httpx.TransportError as exc:
            metrics.api_requests.labels(service=self.service, status="error").inc()
            raise DeliveryError(f"{self.service} unreachable: {type(exc).__name__}: {exc}") from exc
        metrics.api_requests.labels(service=self.service, status=str(resp.status_code)).inc()
        return resp

    def _raise_for_status(self, resp: httpx.Response) -> None:
        status = resp.status_code
        if status < 400:
            return
        detail = f"{self.service} responded HTTP {status}: {resp.text[:500]}"
        if status >= 500 or status == 429:
            raise DeliveryError(detail, status=status)
        if status in (401, 403):
            raise AuthError(detail)
        raise ValidationError(detail)
