"""Generation client with key rotation, classified retries and usage logging."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Any, Protocol

import httpx

from genai_gateway.core.config import GenAISettings, GenerationDefaults
from genai_gateway.core.exceptions import GenerationFailedError
from genai_gateway.keys.manager import KeyPoolManager, fingerprint
from genai_gateway.providers.base import (
    GenerationConfig,
    GenerationProvider,
    GenerationRequest,
    GenerationResult,
)
from genai_gateway.storage.usage import UsageRecord

logger = logging.getLogger("genai.client")

QUOTA_STATUS_CODES = {429}
TRANSIENT_STATUS_CODES = {503, 504}
QUOTA_MARKERS = ("quota", "rate limit")
TRANSIENT_MARKERS = ("timeout", "econnreset", "econnrefused", "network")


class ErrorKind(str, enum.Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    TRANSIENT = "transient"
    FATAL = "fatal"


class UsageSink(Protocol):
    async def record(self, record: UsageRecord) -> Any: ...


def _status_code(error: BaseException) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def classify_error(error: BaseException) -> ErrorKind:
    """Map a provider error onto the retry strategy that applies to it."""
    status = _status_code(error)
    message = str(error).lower()

    if status in QUOTA_STATUS_CODES or any(marker in message for marker in QUOTA_MARKERS):
        return ErrorKind.QUOTA_EXCEEDED
    if (
        status in TRANSIENT_STATUS_CODES
        or any(marker in message for marker in TRANSIENT_MARKERS)
        or isinstance(error, (TimeoutError, ConnectionError, httpx.TransportError))
    ):
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


async def _backoff_sleep(delay_ms: int) -> None:
    await asyncio.sleep(delay_ms / 1000)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class GenerationClient:
    """Runs one logical generation across the key pool.

    Quota errors rotate to another key without spending an attempt. Transient
    errors back off exponentially (``base_delay_ms * 2**attempt``) until
    ``max_retries`` attempts are used. Anything else fails immediately. Each
    call to :meth:`generate` writes exactly one usage record.
    """

    def __init__(
        self,
        keys: KeyPoolManager,
        provider: GenerationProvider,
        usage: UsageSink,
        *,
        default_model: str = "gemini-2.5-flash",
        generation_defaults: GenerationDefaults | None = None,
        max_retries: int = 3,
        base_delay_ms: int = 1000,
    ) -> None:
        self._keys = keys
        self._provider = provider
        self._usage = usage
        self._default_model = default_model
        self._generation_defaults = generation_defaults or GenerationDefaults()
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms

    @classmethod
    def from_settings(
        cls,
        settings: GenAISettings,
        keys: KeyPoolManager,
        provider: GenerationProvider,
        usage: UsageSink,
    ) -> "GenerationClient":
        return cls(
            keys,
            provider,
            usage,
            default_model=settings.model,
            generation_defaults=settings.generation,
            max_retries=settings.max_retries,
            base_delay_ms=settings.base_delay_ms,
        )

    def get_default_model(self) -> str:
        return self._default_model

    def get_default_generation_config(self) -> GenerationConfig:
        defaults = self._generation_defaults
        return GenerationConfig(
            temperature=defaults.temperature,
            top_p=defaults.top_p,
            top_k=defaults.top_k,
            max_output_tokens=defaults.max_output_tokens,
        )

    async def generate(
        self,
        request: GenerationRequest,
        service_name: str,
        operation: str,
        actor_id: str | None = None,
    ) -> GenerationResult:
        model = request.model or self._default_model
        started = time.perf_counter()
        attempt = 0
        rotations = 0
        last_error: BaseException | None = None
        last_kind: ErrorKind | None = None
        key_hash: str | None = None

        while attempt < self.max_retries:
            api_key = await self._keys.next()
            key_hash = fingerprint(api_key)
            logger.debug(
                "Attempt %d/%d for %s.%s",
                attempt + 1,
                self.max_retries,
                service_name,
                operation,
                extra={"event": "generation_attempt", "key_hash": key_hash},
            )

            call_started = time.perf_counter()
            try:
                response = await self._provider.generate(
                    api_key, model, request.contents, request.config
                )
            except Exception as exc:
                last_error = exc
                last_kind = classify_error(exc)
                logger.warning(
                    "Attempt %d/%d failed for %s.%s: %s",
                    attempt + 1,
                    self.max_retries,
                    service_name,
                    operation,
                    exc,
                    extra={
                        "event": "generation_attempt_failed",
                        "key_hash": key_hash,
                        "error_kind": last_kind.value,
                    },
                )

                if last_kind is ErrorKind.QUOTA_EXCEEDED:
                    await self._keys.mark_failure(api_key, "quota exceeded")
                    rotations += 1
                    continue

                if last_kind is ErrorKind.FATAL:
                    attempt += 1
                    break

                attempt += 1
                if attempt < self.max_retries:
                    delay_ms = self.base_delay_ms * 2 ** (attempt - 1)
                    logger.info(
                        "Retrying %s.%s in %dms",
                        service_name,
                        operation,
                        delay_ms,
                        extra={"event": "generation_backoff", "delay_ms": delay_ms},
                    )
                    await _backoff_sleep(delay_ms)
                continue

            duration_ms = _elapsed_ms(call_started)
            await self._keys.mark_success(api_key)
            await self._record_usage(
                UsageRecord(
                    service_name=service_name,
                    operation=operation,
                    model_name=model,
                    user_id=actor_id,
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens,
                    total_tokens=response.usage.total_tokens,
                    duration_ms=duration_ms,
                    success=True,
                    metadata={
                        "key_hash": key_hash,
                        "attempts": attempt + 1,
                        "quota_rotations": rotations,
                    },
                )
            )
            logger.info(
                "Generated content for %s.%s in %dms",
                service_name,
                operation,
                duration_ms,
                extra={"event": "generation_success", "key_hash": key_hash, "model": model},
            )
            return GenerationResult(
                text=response.text,
                model=model,
                usage=response.usage,
                finish_reason=response.finish_reason,
                duration_ms=duration_ms,
                key_hash=key_hash,
            )

        error_message = str(last_error) if last_error else "Unknown error"
        await self._record_usage(
            UsageRecord(
                service_name=service_name,
                operation=operation,
                model_name=model,
                user_id=actor_id,
                duration_ms=_elapsed_ms(started),
                success=False,
                error_message=error_message,
                metadata={
                    "key_hash": key_hash,
                    "attempts": attempt,
                    "quota_rotations": rotations,
                    "error_kind": last_kind.value if last_kind else None,
                },
            )
        )

        if last_kind is ErrorKind.FATAL:
            message = f"AI generation failed: {error_message}"
        else:
            message = f"AI generation failed after {attempt} attempts: {error_message}"
        logger.error(
            message,
            extra={
                "event": "generation_failed",
                "service": service_name,
                "operation": operation,
                "error_kind": last_kind.value if last_kind else None,
            },
        )
        raise GenerationFailedError(
            message,
            service=service_name,
            operation=operation,
            attempts=attempt,
            kind=last_kind,
            cause=last_error,
        ) from last_error

    async def _record_usage(self, record: UsageRecord) -> None:
        try:
            await self._usage.record(record)
        except Exception:
            logger.exception(
                "Failed to log usage",
                extra={
                    "event": "usage_persist_error",
                    "service": record.service_name,
                    "operation": record.operation,
                },
            )


__all__ = ["ErrorKind", "GenerationClient", "UsageSink", "classify_error"]
