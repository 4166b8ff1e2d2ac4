"""Shared aiohttp application helpers."""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Literal, Protocol

import structlog
from aiohttp import web
from aiohttp_cors import CorsConfig, ResourceOptions, setup as cors_setup

from sync_common.exceptions import SyncError, ValidationError
from sync_common.middleware.trace import create_trace_middleware

logger = structlog.get_logger(__name__)

# aiohttp_cors expects a sequence of strings (or "*"), NOT a comma-separated string.
_ALLOWED_HEADERS = (
    "Accept",
    "Accept-Language",
    "Content-Language",
    "Content-Type",
    "Authorization",
    "X-Trace-Id",
    "X-Request-Id",
    "X-Webhook-Signature",
)

_ALLOWED_METHODS = ("GET", "HEAD", "POST", "DELETE", "OPTIONS")

_EXPOSED_HEADERS = ("X-Trace-Id", "X-Request-Id")

HealthInfo = Callable[[web.Application], Awaitable[dict[str, Any]]]


class SettingsProtocol(Protocol):
    """Protocol for settings objects used by the app helpers."""

    app_name: str
    env: Literal["development", "staging", "production"]
    cors_allowed_origins: list[str]


def error_response(exc: SyncError) -> web.Response:
    return web.json_response({"error": exc.error, "message": str(exc)}, status=exc.status_code)


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Render domain errors as JSON responses with their HTTP status."""
    try:
        return await handler(request)
    except SyncError as exc:
        if exc.status_code >= 500:
            logger.error("Unhandled sync error", error=str(exc), error_type=type(exc).__name__)
        return error_response(exc)


def create_base_app(settings: SettingsProtocol) -> tuple[web.Application, CorsConfig]:
    """Create a base aiohttp app with tracing, error mapping and CORS configured."""
    app = web.Application()
    app.middlewares.append(create_trace_middleware(settings.app_name))
    app.middlewares.append(error_middleware)

    cors = cors_setup(
        app,
        defaults={
            origin: ResourceOptions(
                allow_credentials=True,
                expose_headers=_EXPOSED_HEADERS,
                allow_headers=_ALLOWED_HEADERS,
                allow_methods=_ALLOWED_METHODS,
            )
            for origin in settings.cors_allowed_origins
        },
    )
    return app, cors


def add_healthcheck(
    app: web.Application,
    settings: SettingsProtocol,
    extra: HealthInfo | None = None,
) -> None:
    """Register ``GET /health``; ``extra`` contributes service specific fields."""

    async def healthcheck(request: web.Request) -> web.Response:
        payload: dict[str, Any] = {"status": "healthy", "service": settings.app_name, "env": settings.env}
        if extra is not None:
            payload.update(await extra(request.app))
        return web.json_response(payload)

    app.router.add_get("/health", healthcheck)


def add_cors_to_routes(app: web.Application, cors: CorsConfig) -> None:
    """Apply CORS configuration to all routes in the app."""
    for route in list(app.router.routes()):
        cors.add(route)


async def read_json(request: web.Request) -> dict[str, Any]:
    """Parse a JSON object body, raising :class:`ValidationError` otherwise."""
    try:
        data = await request.json()
    except Exception as exc:
        raise ValidationError("Invalid JSON payload") from exc
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def pagination_params(
    request: web.Request,
    *,
    default_limit: int = 50,
    max_limit: int = 500,
) -> tuple[int, int]:
    query = request.rel_url.query
    try:
        limit = int(query.get("limit", str(default_limit)))
        offset = int(query.get("offset", "0"))
    except ValueError as exc:
        raise ValidationError("limit and offset must be integers") from exc
    if limit <= 0:
        limit = default_limit
    return min(limit, max_limit), max(offset, 0)
