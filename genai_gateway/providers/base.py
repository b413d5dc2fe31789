"""Generation provider interfaces."""

from __future__ import annotations

from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field


class GenerationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_output_tokens: int | None = None
    stop_sequences: list[str] | None = None
    response_mime_type: str | None = None
    system_instruction: str | None = None


class GenerationRequest(BaseModel):
    """Model, prompt payload and sampling configuration for one generation."""

    model: str | None = None
    contents: str | list[dict[str, Any]]
    config: GenerationConfig = Field(default_factory=GenerationConfig)


class TokenUsage(BaseModel):
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None


class ProviderResponse(BaseModel):
    text: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    finish_reason: str | None = None
    raw: dict[str, Any] | None = None


class GenerationResult(BaseModel):
    text: str
    model: str
    usage: TokenUsage
    finish_reason: str | None = None
    duration_ms: int
    key_hash: str


class GenerationProvider(Protocol):
    """Anything that can turn a request into text with a given API key."""

    provider_id: str

    async def generate(
        self,
        api_key: str,
        model: str,
        contents: str | list[dict[str, Any]],
        config: GenerationConfig,
    ) -> ProviderResponse: ...
