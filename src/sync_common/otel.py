"""Optional OpenTelemetry instrumentation.

Activated only when ``otel_exporter_endpoint`` is set in settings.
"""
from __future__ import annotations

from typing import Any, Protocol

import structlog
from aiohttp import web
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.aiohttp_server import AioHttpServerInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = structlog.get_logger(__name__)

_PROVIDER_KEY = "otel_tracer_provider"


class SettingsProtocol(Protocol):
    app_name: str
    otel_exporter_endpoint: Any


def setup_otel(app: web.Application, settings: SettingsProtocol) -> None:
    """Initialise tracing for ``app`` if an exporter endpoint is configured."""
    endpoint = settings.otel_exporter_endpoint
    if not endpoint:
        logger.debug("otel_exporter_endpoint not set, tracing disabled")
        return

    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: settings.app_name}))
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{str(endpoint).rstrip('/')}/v1/traces"))
    )
    trace.set_tracer_provider(provider)
    AioHttpServerInstrumentor().instrument(server=app)
    app[_PROVIDER_KEY] = provider
    app.on_cleanup.append(shutdown_otel)
    logger.info("OpenTelemetry tracing enabled", endpoint=str(endpoint), service=settings.app_name)


async def shutdown_otel(app: web.Application) -> None:
    """Flush pending spans on application shutdown."""
    provider = app.get(_PROVIDER_KEY)
    if provider is not None:
        provider.shutdown()


def get_tracer(name: str = __name__) -> trace.Tracer:
    """Return a tracer; a no-op tracer when tracing is disabled."""
    return trace.get_tracer(name)
