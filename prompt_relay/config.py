"""Configuration utilities for the prompt relay service."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator

FinishReasonPolicy = Literal["warn", "error"]

DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"

# Settings field -> environment variable
_ENVIRONMENT: Dict[str, str] = {
    "gemini_model": "PROMPT_RELAY_GEMINI_MODEL",
    "gemini_base_url": "PROMPT_RELAY_GEMINI_BASE_URL",
    "allowed_origins": "PROMPT_RELAY_ALLOWED_ORIGINS",
    "max_prompt_chars": "PROMPT_RELAY_MAX_PROMPT_CHARS",
    "timeout_seconds": "PROMPT_RELAY_TIMEOUT_SECONDS",
    "stream": "PROMPT_RELAY_STREAM",
    "max_output_tokens": "PROMPT_RELAY_MAX_OUTPUT_TOKENS",
    "temperature": "PROMPT_RELAY_TEMPERATURE",
    "top_p": "PROMPT_RELAY_TOP_P",
    "top_k": "PROMPT_RELAY_TOP_K",
    "safety_threshold": "PROMPT_RELAY_SAFETY_THRESHOLD",
    "finish_reason_policy": "PROMPT_RELAY_FINISH_REASON_POLICY",
    "expose_error_details": "PROMPT_RELAY_EXPOSE_ERROR_DETAILS",
    "log_level": "PROMPT_RELAY_LOG_LEVEL",
    "service_name": "OTEL_SERVICE_NAME",
    "otlp_endpoint": "OTEL_EXPORTER_OTLP_ENDPOINT",
    "otel_sdk_disabled": "OTEL_SDK_DISABLED",
}


class Settings(BaseModel):
    """Relay settings, passed explicitly to the application and handler."""

    gemini_api_key: Optional[SecretStr] = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = DEFAULT_GEMINI_BASE_URL
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    max_prompt_chars: int = Field(default=5000, ge=1)
    timeout_seconds: float = Field(default=60.0, gt=0)
    stream: bool = Field(
        default=False,
        description="Forward the provider event stream instead of buffering a JSON reply",
    )
    max_output_tokens: int = Field(default=8192, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    top_p: float = Field(default=0.8, ge=0.0, le=1.0)
    top_k: int = Field(default=40, ge=1)
    safety_threshold: str = "BLOCK_MEDIUM_AND_ABOVE"
    finish_reason_policy: FinishReasonPolicy = Field(
        default="warn",
        description="How buffered mode treats text returned with a non-STOP finish reason",
    )
    expose_error_details: bool = False
    log_level: str = "INFO"
    service_name: str = "prompt-relay"
    otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OTLP/HTTP collector base URL; traces and logs are exported only when set",
    )
    otel_sdk_disabled: bool = False

    @field_validator("gemini_api_key", mode="before")
    @classmethod
    def blank_key_is_missing(cls, value: Optional[str]) -> Optional[str]:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_origins(cls, value: List[str] | str) -> List[str]:
        if isinstance(value, str):
            origins = [origin.strip() for origin in value.split(",") if origin.strip()]
            return origins or ["*"]
        return value

    @field_validator("otlp_endpoint", mode="before")
    @classmethod
    def blank_endpoint_is_unset(cls, value: Optional[str]) -> Optional[str]:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level")
    @classmethod
    def normalise_log_level(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def api_key_configured(self) -> bool:
        return self.gemini_api_key is not None

    @property
    def allows_any_origin(self) -> bool:
        return "*" in self.allowed_origins

    @property
    def tracing_enabled(self) -> bool:
        return self.otlp_endpoint is not None and not self.otel_sdk_disabled

    @classmethod
    def from_env(cls) -> "Settings":
        data: Dict[str, object] = {
            "gemini_api_key": os.getenv("PROMPT_RELAY_GEMINI_API_KEY")
            or os.getenv("GEMINI_API_KEY"),
        }
        for field_name, variable in _ENVIRONMENT.items():
            value = os.getenv(variable)
            if value is not None:
                data[field_name] = value
        return cls(**data)


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings for the default application.

    A missing API key is not an error here: the relay answers each request
    with a configuration error instead of refusing to start.
    """

    return Settings.from_env()
