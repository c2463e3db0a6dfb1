"""Pydantic schemas used by the prompt relay."""
from .gemini import (
    HARM_CATEGORIES,
    Candidate,
    Content,
    GenerateContentRequest,
    GenerateContentResponse,
    GenerationConfig,
    Part,
    PromptFeedback,
    SafetyRating,
    SafetySetting,
    UsageMetadata,
)
from .relay import PromptRequest, RelayFailure, RelaySuccess, utc_timestamp

__all__ = [
    "HARM_CATEGORIES",
    "Candidate",
    "Content",
    "GenerateContentRequest",
    "GenerateContentResponse",
    "GenerationConfig",
    "Part",
    "PromptFeedback",
    "SafetyRating",
    "SafetySetting",
    "UsageMetadata",
    "PromptRequest",
    "RelayFailure",
    "RelaySuccess",
    "utc_timestamp",
]
