from __future__ import annotations

import json

import pytest

from prompt_relay.config import Settings
from prompt_relay.delivery import (
    BufferedDelivery,
    StreamingDelivery,
    error_event,
    get_delivery,
)
from prompt_relay.errors import ProviderError
from prompt_relay.metrics import RelayMetrics
from prompt_relay.models import GenerateContentResponse, PromptRequest


def test_delivery_selected_by_stream_flag() -> None:
    metrics = RelayMetrics()
    assert isinstance(get_delivery(Settings(), metrics), BufferedDelivery)
    assert isinstance(get_delivery(Settings(stream=True), metrics), StreamingDelivery)


def test_build_request_applies_generation_settings() -> None:
    settings = Settings(max_output_tokens=256, temperature=0.2, top_k=8, safety_threshold="BLOCK_ONLY_HIGH")
    delivery = BufferedDelivery(settings, RelayMetrics())

    payload = delivery.build_request(PromptRequest(prompt="hi")).to_payload()
    assert payload["generationConfig"]["maxOutputTokens"] == 256
    assert payload["generationConfig"]["temperature"] == 0.2
    assert payload["generationConfig"]["topK"] == 8
    assert all(item["threshold"] == "BLOCK_ONLY_HIGH" for item in payload["safetySettings"])


def test_only_first_candidate_is_used() -> None:
    delivery = BufferedDelivery(Settings(), RelayMetrics())
    result = GenerateContentResponse.model_validate(
        {
            "candidates": [
                {"content": {"parts": [{"text": "first"}]}, "finishReason": "STOP"},
                {"content": {"parts": [{"text": "second"}]}, "finishReason": "STOP"},
            ]
        }
    )
    assert delivery.to_success(result).text == "first"


def test_blocked_candidate_lists_categories() -> None:
    delivery = BufferedDelivery(Settings(), RelayMetrics())
    result = GenerateContentResponse.model_validate(
        {
            "candidates": [
                {
                    "finishReason": "SAFETY",
                    "safetyRatings": [
                        {"category": "HARM_CATEGORY_HARASSMENT", "probability": "HIGH", "blocked": True},
                        {"category": "HARM_CATEGORY_HATE_SPEECH", "probability": "LOW"},
                    ],
                }
            ]
        }
    )
    with pytest.raises(ProviderError) as exc_info:
        delivery.to_success(result)
    assert exc_info.value.finish_reason == "SAFETY"
    assert exc_info.value.details == "Blocked categories: HARM_CATEGORY_HARASSMENT"


def test_error_event_is_a_terminal_sse_frame() -> None:
    frame = error_event("The generation provider timed out before responding").decode("utf-8")
    assert frame.startswith("event: error\ndata: ")
    assert frame.endswith("\n\n")
    payload = json.loads(frame.split("data: ", 1)[1])
    assert payload["success"] is False
    assert "timed out" in payload["error"]
