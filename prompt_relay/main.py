#!/usr/bin/env python3
"""Prompt relay application forwarding browser prompts to Gemini."""
from __future__ import annotations

from dotenv import load_dotenv

load_dotenv()

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import httpx
from fastapi import Depends, FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .clients import GeminiClient
from .config import Settings, get_settings
from .handler import RelayHandler
from .logs import configure_logging
from .metrics import RelayMetrics, get_metrics
from .telemetry import correlation_scope, instrument_app, instrument_provider_client

CORRELATION_HEADER = "X-Correlation-ID"

logger = logging.getLogger("prompt_relay")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Attach correlation identifiers and latency to responses."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        with correlation_scope(correlation_id):
            start = time.perf_counter()
            try:
                response = await call_next(request)
            except Exception:
                logger.exception("Unhandled exception during request", extra={"path": request.url.path})
                raise
            duration_ms = (time.perf_counter() - start) * 1000
            logger.info(
                "Request completed",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                },
            )

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Process-Time-ms"] = f"{duration_ms:.2f}"
        return response


# Dependency factories -----------------------------------------------------

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_relay_handler(request: Request) -> RelayHandler:
    return request.app.state.relay_handler


def get_relay_metrics(request: Request) -> RelayMetrics:
    return request.app.state.metrics


async def relay(request: Request) -> Response:
    """Every path and every method is handed to the relay handler."""

    return await get_relay_handler(request)(request)


# Application --------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    metrics: Optional[RelayMetrics] = None,
) -> FastAPI:
    """Build the relay application around an explicit ``Settings`` object.

    ``transport`` replaces the network layer of the Gemini client, which is
    how tests stand in for the provider.
    """

    settings = settings or get_settings()
    metrics = metrics or get_metrics()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        client = GeminiClient.from_settings(settings, transport=transport)
        instrument_provider_client(client.http, settings)
        app.state.relay_handler = RelayHandler(settings, client, metrics=metrics)
        logger.info(
            "Prompt relay ready",
            extra={
                "model": settings.gemini_model,
                "delivery": app.state.relay_handler.delivery_mode,
                "api_key": "configured" if settings.api_key_configured else "missing",
                "tracing": settings.tracing_enabled,
            },
        )
        try:
            yield
        finally:
            await client.aclose()

    app = FastAPI(title="Prompt Relay", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.metrics = metrics
    app.add_middleware(CorrelationIdMiddleware)
    instrument_app(app, settings)

    @app.get("/healthz", include_in_schema=False)
    async def healthz(settings: Settings = Depends(get_app_settings)) -> Dict[str, str]:
        """Simple readiness probe for container orchestrators."""

        return {
            "status": "ok",
            "gemini": "configured" if settings.api_key_configured else "missing",
            "delivery": "streaming" if settings.stream else "buffered",
        }

    @app.get("/metrics", include_in_schema=False)
    async def metrics_endpoint(
        relay_metrics: RelayMetrics = Depends(get_relay_metrics),
    ) -> Response:
        return relay_metrics.render()

    # No method list: the handler answers 405 itself, with CORS headers.
    app.add_route("/{path:path}", relay, methods=None, include_in_schema=False)

    return app


app = create_app()
