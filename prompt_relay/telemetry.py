"""Tracing and request correlation for the prompt relay.

Traces are exported only when ``Settings.otlp_endpoint`` is set. Two layers
are instrumented: inbound relay requests (FastAPI) and the outbound calls to
the generation provider (the Gemini client's httpx connection pool). The
provider URL carries the API key as a query parameter, so the httpx request
hook rewrites the recorded URL before the span is exported.
"""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

import httpx
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor, RequestInfo
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span
from structlog.contextvars import bind_contextvars, unbind_contextvars

from .config import Settings

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Both the current and the legacy HTTP semantic-convention names.
PROVIDER_URL_ATTRIBUTES = ("url.full", "http.url")
UNTRACED_PATHS = "healthz,metrics"

_provider: Optional[TracerProvider] = None


def current_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """Bind ``correlation_id`` to stdlib records and structlog events for the block."""

    token = correlation_id_var.set(correlation_id)
    bind_contextvars(correlation_id=correlation_id)
    try:
        yield correlation_id
    finally:
        unbind_contextvars("correlation_id")
        correlation_id_var.reset(token)


def tracer_provider(settings: Settings) -> Optional[TracerProvider]:
    """Return the process-wide provider, building it the first time tracing is enabled."""

    global _provider
    if not settings.tracing_enabled:
        return None
    if _provider is None:
        exporter = OTLPSpanExporter(endpoint=f"{settings.otlp_endpoint.rstrip('/')}/v1/traces")
        provider = TracerProvider(
            resource=Resource.create({"service.name": settings.service_name}),
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)
        _provider = provider
    return _provider


def instrument_app(app: FastAPI, settings: Settings) -> bool:
    provider = tracer_provider(settings)
    if provider is None:
        return False
    FastAPIInstrumentor().instrument_app(
        app, tracer_provider=provider, excluded_urls=UNTRACED_PATHS
    )
    return True


def instrument_provider_client(http_client: httpx.AsyncClient, settings: Settings) -> bool:
    """Trace every request the Gemini client sends, with the key stripped from the URL."""

    provider = tracer_provider(settings)
    if provider is None:
        return False
    HTTPXClientInstrumentor.instrument_client(
        http_client,
        tracer_provider=provider,
        request_hook=redact_provider_url,
    )
    return True


def scrubbed_url(url: httpx.URL) -> str:
    return str(url.copy_remove_param("key"))


async def redact_provider_url(span: Span, request: RequestInfo) -> None:
    if not span.is_recording() or not isinstance(request.url, httpx.URL):
        return
    recorded = getattr(span, "attributes", None) or {}
    for attribute in PROVIDER_URL_ATTRIBUTES:
        if attribute in recorded:
            span.set_attribute(attribute, scrubbed_url(request.url))
