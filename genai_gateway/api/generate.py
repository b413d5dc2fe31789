"""Generation API routes."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from genai_gateway.core.exceptions import AllKeysExhaustedError, GenerationFailedError
from genai_gateway.providers.base import GenerationConfig, GenerationRequest, GenerationResult
from genai_gateway.services import GatewayServices, get_services

router = APIRouter(prefix="/v1")


class GeneratePayload(BaseModel):
    service: str
    operation: str
    contents: str | list[dict[str, Any]]
    model: str | None = None
    config: GenerationConfig | None = None
    actor_id: str | None = None


GENERATE_EXAMPLES = {
    "text": {
        "summary": "Plain prompt with defaults",
        "value": {
            "service": "assessments",
            "operation": "generate_assessment",
            "contents": "Write three multiple-choice questions about binary search.",
        },
    },
    "json": {
        "summary": "JSON output with a system instruction",
        "value": {
            "service": "roadmaps",
            "operation": "generate_insights",
            "contents": [{"role": "user", "content": "Summarize my progress."}],
            "config": {
                "temperature": 0.2,
                "response_mime_type": "application/json",
                "system_instruction": "Respond with a JSON object.",
            },
            "actor_id": "user-123",
        },
    },
}


def _service_unavailable(message: str, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={
            "error": {
                "message": message,
                "type": "service_unavailable",
                "code": code,
            }
        },
    )


@router.post(
    "/generate",
    response_model=GenerationResult,
    openapi_extra={
        "requestBody": {"content": {"application/json": {"examples": GENERATE_EXAMPLES}}}
    },
)
async def generate(
    payload: GeneratePayload,
    services: Annotated[GatewayServices, Depends(get_services)],
) -> GenerationResult:
    client = services.client
    config = payload.config or client.get_default_generation_config()
    request = GenerationRequest(
        model=payload.model or client.get_default_model(),
        contents=payload.contents,
        config=config,
    )
    try:
        return await client.generate(
            request, payload.service, payload.operation, payload.actor_id
        )
    except AllKeysExhaustedError:
        return _service_unavailable(
            "Generation capacity is exhausted, please try again later",
            "capacity_exhausted",
        )
    except GenerationFailedError:
        return _service_unavailable(
            "Generation is temporarily unavailable", "generation_failed"
        )
