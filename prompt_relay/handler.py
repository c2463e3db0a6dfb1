"""The relay handler: validate an inbound prompt and relay it to Gemini."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from .clients import MISSING_KEY_MESSAGE, GeminiClient
from .config import Settings
from .delivery import Delivery, get_delivery
from .errors import ClientError, ConfigError, MethodNotAllowedError, RelayError
from .metrics import RelayMetrics, get_metrics
from .models import PromptRequest, RelayFailure

logger = logging.getLogger(__name__)

ALLOWED_METHODS = "POST, OPTIONS"
ALLOWED_HEADERS = "Content-Type"
PREFLIGHT_MAX_AGE = "86400"
INTERNAL_ERROR_MESSAGE = "Internal server error"


def cors_headers(settings: Settings, origin: Optional[str]) -> Dict[str, str]:
    """Origin headers for a response to a request from ``origin``.

    Wildcard deployments answer ``*``. Otherwise a listed origin is echoed,
    and any other caller is told the first configured origin.
    """

    if settings.allows_any_origin:
        return {"Access-Control-Allow-Origin": "*"}
    if origin and origin in settings.allowed_origins:
        return {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}
    return {"Access-Control-Allow-Origin": settings.allowed_origins[0], "Vary": "Origin"}


def preflight_headers(settings: Settings, origin: Optional[str]) -> Dict[str, str]:
    return {
        **cors_headers(settings, origin),
        "Access-Control-Allow-Methods": ALLOWED_METHODS,
        "Access-Control-Allow-Headers": ALLOWED_HEADERS,
        "Access-Control-Max-Age": PREFLIGHT_MAX_AGE,
    }


class RelayHandler:
    """Handles one inbound request end to end; holds no per-request state."""

    def __init__(
        self,
        settings: Settings,
        client: GeminiClient,
        *,
        delivery: Optional[Delivery] = None,
        metrics: Optional[RelayMetrics] = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._metrics = metrics or get_metrics()
        self._delivery = delivery or get_delivery(settings, self._metrics)

    @property
    def delivery_mode(self) -> str:
        return self._delivery.mode

    async def __call__(self, request: Request) -> Response:
        origin = request.headers.get("origin")
        if request.method == "OPTIONS":
            self._metrics.record_outcome("preflight")
            return Response(status_code=200, headers=preflight_headers(self._settings, origin))

        headers = cors_headers(self._settings, origin)
        try:
            if request.method != "POST":
                raise MethodNotAllowedError("Method Not Allowed")
            payload = await self._read_json(request)
            prompt = PromptRequest.from_payload(
                payload, max_chars=self._settings.max_prompt_chars
            )
            if not self._client.configured:
                logger.error("Gemini API key is not configured")
                raise ConfigError(MISSING_KEY_MESSAGE)
            logger.info(
                "Relaying prompt",
                extra={
                    "prompt_chars": len(prompt.prompt),
                    "model": self._client.model,
                    "delivery": self._delivery.mode,
                },
            )
            response = await self._delivery.deliver(self._client, prompt, headers)
        except RelayError as exc:
            return self._error_response(exc, headers)
        except Exception as exc:
            logger.exception("Unexpected failure while relaying prompt")
            failure = RelayError(
                INTERNAL_ERROR_MESSAGE, debug=self._client.scrub(str(exc) or repr(exc))
            )
            return self._error_response(failure, headers)

        self._metrics.record_outcome("success")
        return response

    @staticmethod
    async def _read_json(request: Request) -> Any:
        raw = await request.body()
        if not raw.strip():
            return {}
        try:
            return json.loads(raw)
        except (UnicodeDecodeError, ValueError) as exc:
            raise ClientError("Invalid JSON body") from exc

    def _error_response(self, exc: RelayError, headers: Dict[str, str]) -> Response:
        self._metrics.record_outcome(exc.outcome)
        if exc.status_code >= 500:
            logger.warning(
                "Relay failed: %s",
                exc.message,
                extra={"outcome": exc.outcome, "finish_reason": exc.finish_reason},
            )
        else:
            logger.info("Rejected request: %s", exc.message, extra={"outcome": exc.outcome})

        body = RelayFailure(
            error=exc.message,
            details=exc.details,
            finish_reason=exc.finish_reason,
            debug=exc.debug if self._settings.expose_error_details else None,
        )
        response_headers = dict(headers)
        if isinstance(exc, MethodNotAllowedError):
            response_headers["Allow"] = ALLOWED_METHODS
        return JSONResponse(body.to_body(), status_code=exc.status_code, headers=response_headers)
