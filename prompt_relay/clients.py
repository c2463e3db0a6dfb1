"""Async wrapper around the Gemini generative-language REST API."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode
from pydantic import SecretStr, ValidationError

from .config import DEFAULT_GEMINI_BASE_URL, Settings
from .errors import (
    ConfigError,
    ProviderConnectionError,
    ProviderError,
    ProviderTimeoutError,
    RelayError,
)
from .models import GenerateContentRequest, GenerateContentResponse
from .telemetry import current_correlation_id

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

API_VERSION = "v1beta"
MISSING_KEY_MESSAGE = "Server misconfigured: missing GEMINI_API_KEY"
TIMEOUT_MESSAGE = "The generation provider timed out before responding"
CONNECTION_MESSAGE = "Could not connect to the generation provider"
INVALID_RESPONSE_MESSAGE = "Invalid response from the generation provider"


class GeminiClient:
    """Issues ``generateContent`` calls, buffered or as a server-sent event stream.

    Every call is bounded by ``timeout`` seconds: the whole call in buffered
    mode, the wait for response headers (then each read) in streaming mode.
    """

    def __init__(
        self,
        api_key: Optional[SecretStr | str],
        model: str,
        base_url: str = DEFAULT_GEMINI_BASE_URL,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if isinstance(api_key, str):
            api_key = SecretStr(api_key) if api_key else None
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "GeminiClient":
        return cls(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout=settings.timeout_seconds,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return self._api_key is not None

    @property
    def model(self) -> str:
        return self._model

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http

    async def aclose(self) -> None:
        await self._http.aclose()

    def endpoint(self, method: str) -> str:
        return f"{self._base_url}/{API_VERSION}/models/{self._model}:{method}"

    def scrub(self, text: str) -> str:
        """Remove the API key from text that may reach logs or callers."""

        if self._api_key is None or not text:
            return text
        return text.replace(self._api_key.get_secret_value(), "***")

    def _params(self, **extra: str) -> Dict[str, str]:
        if self._api_key is None:
            raise ConfigError(MISSING_KEY_MESSAGE)
        return {**extra, "key": self._api_key.get_secret_value()}

    def _start_span(self, name: str, operation: str) -> Any:
        span_attributes = {
            "llm.system": "gemini",
            "llm.operation": operation,
            "llm.model": self._model,
        }
        correlation_id = current_correlation_id()
        if correlation_id:
            span_attributes["correlation.id"] = correlation_id
        return tracer.start_as_current_span(name, attributes=span_attributes)

    async def _send(self, request: httpx.Request, *, stream: bool) -> httpx.Response:
        try:
            return await asyncio.wait_for(
                self._http.send(request, stream=stream),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            logger.warning(
                "Gemini call exceeded deadline",
                extra={"model": self._model, "timeout_s": self._timeout},
            )
            raise ProviderTimeoutError(
                TIMEOUT_MESSAGE, debug=self.scrub(repr(exc))
            ) from exc
        except httpx.TransportError as exc:
            logger.warning(
                "Gemini connection failed: %s", type(exc).__name__, extra={"model": self._model}
            )
            raise ProviderConnectionError(
                CONNECTION_MESSAGE, debug=self.scrub(str(exc) or repr(exc))
            ) from exc

    def _check_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        body = self.scrub(response.text)
        logger.error(
            "Gemini returned error %s: %s",
            response.status_code,
            body,
            extra={"model": self._model},
        )
        raise ProviderError.from_status(response.status_code, body)

    def _parse(self, response: httpx.Response) -> GenerateContentResponse:
        try:
            return GenerateContentResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            logger.error("Gemini returned an unreadable body", extra={"model": self._model})
            raise ProviderError(
                INVALID_RESPONSE_MESSAGE,
                details=self.scrub(response.text[:1000]) or None,
                provider_status=response.status_code,
            ) from exc

    @staticmethod
    def _record_failure(span: Span, exc: RelayError) -> None:
        span.record_exception(exc)
        span.set_status(Status(StatusCode.ERROR, exc.message))

    async def generate_content(
        self, request: GenerateContentRequest
    ) -> GenerateContentResponse:
        """Call ``generateContent`` and return the parsed provider response."""

        with self._start_span("Gemini.generateContent", "generate_content") as span:
            try:
                http_request = self._http.build_request(
                    "POST",
                    self.endpoint("generateContent"),
                    params=self._params(),
                    json=request.to_payload(),
                )
                response = await self._send(http_request, stream=False)
                self._check_status(response)
                result = self._parse(response)
            except RelayError as exc:
                self._record_failure(span, exc)
                raise

            span.set_status(Status(StatusCode.OK))
            if result.candidates and result.candidates[0].finish_reason:
                span.set_attribute("llm.finish_reason", result.candidates[0].finish_reason)
            if result.usage_metadata:
                for usage_key, usage_value in result.usage_metadata.model_dump().items():
                    if isinstance(usage_value, int):
                        span.set_attribute(f"llm.usage.{usage_key}", usage_value)
            return result

    async def open_stream(self, request: GenerateContentRequest) -> httpx.Response:
        """Open ``streamGenerateContent`` and return the response once headers arrive.

        The caller owns the returned response and must close it; ``iter_events``
        does so when iteration ends.
        """

        with self._start_span("Gemini.streamGenerateContent", "stream_generate_content") as span:
            try:
                http_request = self._http.build_request(
                    "POST",
                    self.endpoint("streamGenerateContent"),
                    params=self._params(alt="sse"),
                    json=request.to_payload(),
                )
                response = await self._send(http_request, stream=True)
                if not response.is_success:
                    try:
                        await response.aread()
                    finally:
                        await response.aclose()
                    self._check_status(response)
            except RelayError as exc:
                self._record_failure(span, exc)
                raise
            span.set_status(Status(StatusCode.OK))
            return response

    async def iter_events(self, response: httpx.Response) -> AsyncIterator[bytes]:
        """Yield the event-stream body unchanged, closing the response at the end."""

        started = time.perf_counter()
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(TIMEOUT_MESSAGE, debug=self.scrub(repr(exc))) from exc
        except httpx.TransportError as exc:
            raise ProviderConnectionError(
                CONNECTION_MESSAGE, debug=self.scrub(str(exc) or repr(exc))
            ) from exc
        finally:
            await response.aclose()
            logger.debug(
                "Gemini event stream closed",
                extra={"duration_ms": round((time.perf_counter() - started) * 1000, 2)},
            )
