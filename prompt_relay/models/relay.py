"""Pydantic models for the relay's own request and response bodies."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import ClientError

PROMPT_FIELDS = ("message", "prompt")


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class PromptRequest(BaseModel):
    """Canonical inbound request, whichever field name the caller used."""

    prompt: str = Field(..., min_length=1)

    @classmethod
    def from_payload(cls, payload: Any, *, max_chars: int) -> "PromptRequest":
        """Normalise a decoded JSON body into a prompt request.

        The first of ``message`` and ``prompt`` holding a non-blank string is
        used, so an empty ``message`` falls through to ``prompt``. The length
        cap applies to the text as sent; the forwarded prompt is stripped.
        """

        if not isinstance(payload, dict):
            raise ClientError("Invalid JSON body")

        present = [(name, payload[name]) for name in PROMPT_FIELDS if payload.get(name) is not None]
        if not present:
            raise ClientError("Missing message")

        for field_name, value in present:
            if isinstance(value, str) and value.strip():
                break
        else:
            field_name, value = present[0]
            if not isinstance(value, str):
                raise ClientError(f"'{field_name}' must be a string")
            raise ClientError(f"'{field_name}' must not be empty")

        if len(value) > max_chars:
            raise ClientError(
                f"Message is too long: {len(value)} characters "
                f"(maximum is {max_chars} characters)"
            )
        return cls(prompt=value.strip())


class _RelayBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timestamp: str = Field(default_factory=utc_timestamp)

    def to_body(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class RelaySuccess(_RelayBody):
    """Buffered reply. ``response`` and ``text`` carry the same string."""

    success: bool = True
    response: str
    text: str
    finish_reason: str = Field(default="STOP", alias="finishReason")

    @classmethod
    def from_text(cls, text: str, finish_reason: Optional[str]) -> "RelaySuccess":
        return cls(response=text, text=text, finish_reason=finish_reason or "STOP")


class RelayFailure(_RelayBody):
    success: bool = False
    error: str
    details: Optional[str] = None
    finish_reason: Optional[str] = Field(default=None, alias="finishReason")
    debug: Optional[str] = None
