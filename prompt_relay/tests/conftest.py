from __future__ import annotations

import json
import os
import sys
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("OTEL_SDK_DISABLED", "true")

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from prompt_relay.config import Settings
from prompt_relay.main import create_app
from prompt_relay.metrics import RelayMetrics

TEST_API_KEY = "test-gemini-key"


def gemini_reply(
    text: Optional[str] = "hello",
    finish_reason: Optional[str] = "STOP",
) -> Dict[str, Any]:
    candidate: Dict[str, Any] = {"content": {"role": "model", "parts": []}}
    if text is not None:
        candidate["content"]["parts"].append({"text": text})
    if finish_reason is not None:
        candidate["finishReason"] = finish_reason
    return {
        "candidates": [candidate],
        "usageMetadata": {"promptTokenCount": 3, "candidatesTokenCount": 1, "totalTokenCount": 4},
    }


class FakeGemini:
    """Records outbound requests and answers them with a configurable handler."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.responder: Callable[[httpx.Request], Any] = lambda request: httpx.Response(
            200, json=gemini_reply(), request=request
        )

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responder(request)
        if hasattr(response, "__await__"):
            response = await response
        return response

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def last_payload(self) -> Dict[str, Any]:
        return json.loads(self.requests[-1].content)


@pytest.fixture()
def fake_gemini() -> FakeGemini:
    return FakeGemini()


@pytest.fixture()
def settings() -> Settings:
    return Settings(gemini_api_key=TEST_API_KEY, allowed_origins=["*"])


@pytest.fixture()
def metrics() -> RelayMetrics:
    return RelayMetrics()


@pytest.fixture()
def make_client(
    fake_gemini: FakeGemini, metrics: RelayMetrics
) -> Generator[Callable[..., TestClient], None, None]:
    """Build a test client for an app with the given settings overrides."""

    opened: List[TestClient] = []

    def _make(**overrides: Any) -> TestClient:
        overrides.setdefault("gemini_api_key", TEST_API_KEY)
        app = create_app(Settings(**overrides), transport=fake_gemini.transport, metrics=metrics)
        http_client = TestClient(app)
        http_client.__enter__()
        opened.append(http_client)
        return http_client

    yield _make
    for http_client in opened:
        http_client.__exit__(None, None, None)


@pytest.fixture()
def client(make_client: Callable[..., TestClient]) -> TestClient:
    return make_client()
