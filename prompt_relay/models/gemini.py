"""Pydantic models for the Gemini ``generateContent`` REST payloads."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

HARM_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


class _GeminiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Part(_GeminiModel):
    text: Optional[str] = None


class Content(_GeminiModel):
    role: Optional[str] = None
    parts: List[Part] = Field(default_factory=list)


class GenerationConfig(_GeminiModel):
    max_output_tokens: int = Field(..., alias="maxOutputTokens")
    temperature: float
    top_p: float = Field(..., alias="topP")
    top_k: int = Field(..., alias="topK")


class SafetySetting(_GeminiModel):
    category: str
    threshold: str


class GenerateContentRequest(_GeminiModel):
    """Request body shared by the buffered and streaming endpoints."""

    contents: List[Content] = Field(..., min_length=1)
    generation_config: GenerationConfig = Field(..., alias="generationConfig")
    safety_settings: List[SafetySetting] = Field(
        default_factory=list, alias="safetySettings"
    )

    @classmethod
    def for_prompt(
        cls,
        prompt: str,
        *,
        max_output_tokens: int,
        temperature: float,
        top_p: float,
        top_k: int,
        safety_threshold: str,
    ) -> "GenerateContentRequest":
        return cls(
            contents=[Content(role="user", parts=[Part(text=prompt)])],
            generation_config=GenerationConfig(
                max_output_tokens=max_output_tokens,
                temperature=temperature,
                top_p=top_p,
                top_k=top_k,
            ),
            safety_settings=[
                SafetySetting(category=category, threshold=safety_threshold)
                for category in HARM_CATEGORIES
            ],
        )

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class SafetyRating(_GeminiModel):
    category: Optional[str] = None
    probability: Optional[str] = None
    blocked: Optional[bool] = None


class Candidate(_GeminiModel):
    content: Optional[Content] = None
    finish_reason: Optional[str] = Field(default=None, alias="finishReason")
    safety_ratings: List[SafetyRating] = Field(
        default_factory=list, alias="safetyRatings"
    )

    @property
    def first_text(self) -> Optional[str]:
        """Text of the first content part, or ``None`` when there is none."""

        if self.content is None or not self.content.parts:
            return None
        return self.content.parts[0].text

    @property
    def blocked_categories(self) -> List[str]:
        return [
            rating.category
            for rating in self.safety_ratings
            if rating.blocked and rating.category
        ]


class PromptFeedback(_GeminiModel):
    block_reason: Optional[str] = Field(default=None, alias="blockReason")
    safety_ratings: List[SafetyRating] = Field(
        default_factory=list, alias="safetyRatings"
    )


class UsageMetadata(_GeminiModel):
    prompt_token_count: Optional[int] = Field(default=None, alias="promptTokenCount")
    candidates_token_count: Optional[int] = Field(
        default=None, alias="candidatesTokenCount"
    )
    total_token_count: Optional[int] = Field(default=None, alias="totalTokenCount")


class GenerateContentResponse(_GeminiModel):
    candidates: List[Candidate] = Field(default_factory=list)
    prompt_feedback: Optional[PromptFeedback] = Field(
        default=None, alias="promptFeedback"
    )
    usage_metadata: Optional[UsageMetadata] = Field(
        default=None, alias="usageMetadata"
    )
    model_version: Optional[str] = Field(default=None, alias="modelVersion")
