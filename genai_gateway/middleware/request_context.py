"""Request ID middleware for log correlation."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from genai_gateway.logging import reset_request_id, set_request_id

REQUEST_ID_HEADER = "x-request-id"

logger = logging.getLogger("genai.http")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request ID for the duration of a request and echo it back."""

    async def dispatch(  # type: ignore[override]
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        token = set_request_id(request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
            logger.info(
                "%s %s -> %d",
                request.method,
                request.url.path,
                response.status_code,
                extra={
                    "event": "http_request",
                    "duration_ms": round((time.perf_counter() - start) * 1000, 1),
                },
            )
        finally:
            reset_request_id(token)
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        return response
