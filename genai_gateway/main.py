"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from genai_gateway.api import admin, generate
from genai_gateway.core.config import load_config
from genai_gateway.logging import configure_logging, get_request_id
from genai_gateway.middleware.request_context import RequestContextMiddleware
from genai_gateway.services import GatewayServices, build_services

logger = logging.getLogger("genai.app")


def create_app(services: GatewayServices | None = None) -> FastAPI:
    """Build the app; without ``services`` the stack is wired from config at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if services is not None:
            app.state.services = services
            yield
            return

        config = load_config()
        configure_logging(config.logging)
        built = await build_services(config)
        app.state.services = built
        try:
            yield
        finally:
            await built.close()

    app = FastAPI(title="GenAI Gateway", version="0.1.0", lifespan=lifespan)
    app.include_router(generate.router)
    app.include_router(admin.router)
    app.add_middleware(RequestContextMiddleware)

    @app.exception_handler(Exception)
    async def unexpected_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "Unhandled error",
            extra={
                "event": "request_error",
                "path": request.url.path,
                "request_id": get_request_id(),
            },
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "message": "Internal server error",
                    "type": "internal_server_error",
                    "code": "internal_error",
                }
            },
        )

    return app


app = create_app()
