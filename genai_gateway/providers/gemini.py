"""Gemini ``generateContent`` adapter."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from genai_gateway.core.config import GenAISettings
from genai_gateway.core.exceptions import ProviderCallError

from .base import GenerationConfig, ProviderResponse, TokenUsage
from .utils import extract_error_detail

logger = logging.getLogger("genai.provider.gemini")

_GENERATION_FIELDS = {
    "temperature": "temperature",
    "top_p": "topP",
    "top_k": "topK",
    "max_output_tokens": "maxOutputTokens",
    "stop_sequences": "stopSequences",
    "response_mime_type": "responseMimeType",
}


class GeminiProvider:
    provider_id = "gemini"

    def __init__(
        self,
        base_url: str,
        generate_path: str = "/v1beta/models/{model}:generateContent",
        timeout: float = 60.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._path = generate_path
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: GenAISettings) -> "GeminiProvider":
        return cls(settings.base_url, settings.generate_path, settings.timeout_seconds)

    async def generate(
        self,
        api_key: str,
        model: str,
        contents: str | list[dict[str, Any]],
        config: GenerationConfig,
    ) -> ProviderResponse:
        payload = self.build_payload(contents, config)
        data = await self._post(model, payload, api_key)
        return self._normalize_response(data)

    def build_payload(
        self, contents: str | list[dict[str, Any]], config: GenerationConfig
    ) -> dict[str, Any]:
        if isinstance(contents, str):
            normalized = [{"role": "user", "parts": [{"text": contents}]}]
        else:
            normalized = [self._normalize_content(item) for item in contents]

        payload: dict[str, Any] = {"contents": normalized}
        if config.system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": config.system_instruction}]}

        generation_config = {
            target: getattr(config, attr)
            for attr, target in _GENERATION_FIELDS.items()
            if getattr(config, attr) is not None
        }
        if generation_config:
            payload["generationConfig"] = generation_config
        return payload

    def _normalize_content(self, item: dict[str, Any]) -> dict[str, Any]:
        if "parts" in item:
            return item
        # Chat-style {"role", "content"} messages.
        role = "model" if item.get("role") in {"assistant", "model"} else "user"
        text = item.get("content") or item.get("text") or ""
        return {"role": role, "parts": [{"text": str(text)}]}

    def _normalize_response(self, data: dict[str, Any]) -> ProviderResponse:
        candidate = self._select_candidate(data.get("candidates"))
        text = ""
        finish_reason = None
        if candidate:
            parts = candidate.get("content", {}).get("parts", [])
            text = "".join(
                part.get("text", "") for part in parts if isinstance(part, dict)
            )
            finish_reason = candidate.get("finishReason")

        return ProviderResponse(
            text=text,
            usage=self._normalize_usage(data.get("usageMetadata")),
            finish_reason=finish_reason.lower() if isinstance(finish_reason, str) else None,
            raw=data,
        )

    def _select_candidate(self, candidates: Any) -> dict[str, Any] | None:
        if not isinstance(candidates, list):
            return None
        for candidate in candidates:
            if isinstance(candidate, dict):
                return candidate
        return None

    def _normalize_usage(self, usage: Any) -> TokenUsage:
        if not isinstance(usage, dict):
            return TokenUsage()
        prompt = usage.get("promptTokenCount")
        completion = usage.get("candidatesTokenCount")
        total = usage.get("totalTokenCount")
        if not isinstance(total, int) and isinstance(prompt, int) and isinstance(completion, int):
            total = prompt + completion
        return TokenUsage(
            input_tokens=prompt if isinstance(prompt, int) else None,
            output_tokens=completion if isinstance(completion, int) else None,
            total_tokens=total if isinstance(total, int) else None,
        )

    async def _post(self, model: str, payload: dict[str, Any], api_key: str) -> dict[str, Any]:
        model_slug = model.removeprefix("models/")
        url = f"{self._base_url}{self._path.format(model=model_slug)}"
        headers = {
            "x-goog-api-key": api_key,
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderCallError(
                self.provider_id, message=f"Provider request timeout: {type(exc).__name__}"
            ) from exc
        except httpx.RequestError as exc:
            raise ProviderCallError(
                self.provider_id, message=f"Provider network error: {exc}"
            ) from exc

        if response.is_error:
            detail = extract_error_detail(response)
            message = f"Provider error (HTTP {response.status_code})"
            if detail:
                message = f"{message}: {detail}"
            logger.debug(
                "Gemini call failed",
                extra={"event": "provider_http_error", "status_code": response.status_code},
            )
            raise ProviderCallError(
                self.provider_id, message=message, status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderCallError(
                self.provider_id, message="Unexpected response format"
            ) from exc
        if not isinstance(data, dict):
            raise ProviderCallError(self.provider_id, message="Unexpected response format")
        return data
