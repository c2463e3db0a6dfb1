"""Delivery of model output to the caller: buffered JSON or a relayed event stream."""
from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict

import httpx
from fastapi import Response
from fastapi.responses import JSONResponse, StreamingResponse

from .clients import GeminiClient
from .config import Settings
from .errors import ProviderError, RelayError
from .metrics import RelayMetrics
from .models import (
    GenerateContentRequest,
    GenerateContentResponse,
    PromptRequest,
    RelayFailure,
    RelaySuccess,
)

logger = logging.getLogger(__name__)

NO_CONTENT_MESSAGE = "No content generated; the prompt may have been filtered"
EMPTY_CANDIDATE_MESSAGE = "The model returned an empty response"
INCOMPLETE_MESSAGE = "The model stopped before completing its response"

EVENT_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


class Delivery(ABC):
    """Turns a validated prompt into the HTTP response sent back to the caller."""

    mode: str = "base"

    def __init__(self, settings: Settings, metrics: RelayMetrics) -> None:
        self._settings = settings
        self._metrics = metrics

    def build_request(self, prompt: PromptRequest) -> GenerateContentRequest:
        settings = self._settings
        return GenerateContentRequest.for_prompt(
            prompt.prompt,
            max_output_tokens=settings.max_output_tokens,
            temperature=settings.temperature,
            top_p=settings.top_p,
            top_k=settings.top_k,
            safety_threshold=settings.safety_threshold,
        )

    @abstractmethod
    async def deliver(
        self,
        client: GeminiClient,
        prompt: PromptRequest,
        headers: Dict[str, str],
    ) -> Response:
        ...


class BufferedDelivery(Delivery):
    """Waits for the full completion and answers with a JSON body."""

    mode = "buffered"

    async def deliver(
        self,
        client: GeminiClient,
        prompt: PromptRequest,
        headers: Dict[str, str],
    ) -> Response:
        started = time.perf_counter()
        try:
            result = await client.generate_content(self.build_request(prompt))
        finally:
            self._metrics.observe_provider_latency(self.mode, time.perf_counter() - started)
        body = self.to_success(result)
        return JSONResponse(body.to_body(), status_code=200, headers=headers)

    def to_success(self, result: GenerateContentResponse) -> RelaySuccess:
        """Map the first candidate to a success body, or raise ``ProviderError``."""

        if not result.candidates:
            block_reason = (
                result.prompt_feedback.block_reason if result.prompt_feedback else None
            )
            logger.warning("Gemini returned no candidates", extra={"block_reason": block_reason})
            raise ProviderError(
                NO_CONTENT_MESSAGE,
                details=f"Prompt blocked: {block_reason}" if block_reason else None,
            )

        candidate = result.candidates[0]
        finish_reason = candidate.finish_reason or "STOP"
        text = candidate.first_text
        if text is None:
            blocked = candidate.blocked_categories
            logger.warning(
                "Gemini candidate has no content",
                extra={"finish_reason": finish_reason, "blocked_categories": blocked},
            )
            raise ProviderError(
                EMPTY_CANDIDATE_MESSAGE,
                finish_reason=finish_reason,
                details=f"Blocked categories: {', '.join(blocked)}" if blocked else None,
            )

        if finish_reason != "STOP":
            if self._settings.finish_reason_policy == "error":
                raise ProviderError(INCOMPLETE_MESSAGE, finish_reason=finish_reason)
            logger.warning(
                "Gemini finished with %s; returning partial text", finish_reason
            )
        return RelaySuccess.from_text(text, finish_reason)


class StreamingDelivery(Delivery):
    """Forwards the provider's server-sent events to the caller unchanged."""

    mode = "streaming"

    async def deliver(
        self,
        client: GeminiClient,
        prompt: PromptRequest,
        headers: Dict[str, str],
    ) -> Response:
        started = time.perf_counter()
        try:
            upstream = await client.open_stream(self.build_request(prompt))
        finally:
            self._metrics.observe_provider_latency(self.mode, time.perf_counter() - started)
        return StreamingResponse(
            self._relay(client, upstream),
            status_code=200,
            media_type="text/event-stream",
            headers={**headers, **EVENT_STREAM_HEADERS},
        )

    async def _relay(
        self, client: GeminiClient, upstream: httpx.Response
    ) -> AsyncIterator[bytes]:
        # Headers are already sent, so a mid-stream failure becomes a final error event.
        try:
            async for chunk in client.iter_events(upstream):
                yield chunk
        except RelayError as exc:
            logger.warning("Gemini event stream interrupted: %s", exc.message)
            self._metrics.record_outcome(exc.outcome)
            yield error_event(exc.message)


def error_event(message: str) -> bytes:
    """Encode a relay failure as a terminal ``error`` server-sent event."""

    payload = json.dumps(RelayFailure(error=message).to_body())
    return f"event: error\ndata: {payload}\n\n".encode("utf-8")


def get_delivery(settings: Settings, metrics: RelayMetrics) -> Delivery:
    if settings.stream:
        return StreamingDelivery(settings, metrics)
    return BufferedDelivery(settings, metrics)
