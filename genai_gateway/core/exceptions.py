"""Custom exception types."""

from __future__ import annotations

from typing import Any


class ConfigurationError(Exception):
    """Raised when the generation stack cannot be configured."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AllKeysExhaustedError(Exception):
    """Raised when every API key is over quota or failure-disabled."""

    def __init__(self, pool_size: int) -> None:
        message = (
            "All API keys have reached their daily quota or are marked as failed. "
            "Please try again later."
        )
        super().__init__(message)
        self.pool_size = pool_size
        self.message = message


class ProviderCallError(Exception):
    """Raised by provider adapters when a generation call fails."""

    def __init__(
        self,
        provider_id: str,
        message: str = "Provider call failed",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider_id = provider_id
        self.message = message
        self.status_code = status_code


class GenerationFailedError(Exception):
    """Raised when a generation request gives up."""

    def __init__(
        self,
        message: str,
        *,
        service: str,
        operation: str,
        attempts: int,
        kind: Any = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.service = service
        self.operation = operation
        self.attempts = attempts
        self.kind = kind
        self.cause = cause
