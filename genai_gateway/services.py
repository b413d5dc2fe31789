"""Explicit construction of the generation stack."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy import Engine

from genai_gateway.client.wrapper import GenerationClient
from genai_gateway.core.config import AppConfig
from genai_gateway.keys.manager import KeyPoolManager
from genai_gateway.keys.store import RedisCounterStore
from genai_gateway.providers.gemini import GeminiProvider
from genai_gateway.storage.database import build_engine, build_session_factory, init_db
from genai_gateway.storage.usage import UsageLog

logger = logging.getLogger("genai.app")


@dataclass
class GatewayServices:
    keys: KeyPoolManager
    client: GenerationClient
    usage: UsageLog
    store: RedisCounterStore | None = None
    engine: Engine | None = None

    async def close(self) -> None:
        if self.store is not None:
            await self.store.close()
        if self.engine is not None:
            self.engine.dispose()


async def build_services(config: AppConfig) -> GatewayServices:
    """Wire store, key pool, provider, usage log and client from config."""
    engine = build_engine(config.database.url)
    init_db(engine)
    usage = UsageLog(build_session_factory(engine))

    store = RedisCounterStore.from_url(config.redis.url)
    keys = KeyPoolManager.from_settings(config.genai, config.redis, store)
    await keys.initialize()

    client = GenerationClient.from_settings(
        config.genai, keys, GeminiProvider.from_settings(config.genai), usage
    )
    logger.info(
        "Generation stack ready",
        extra={"event": "startup", "keys": len(keys), "model": config.genai.model},
    )
    return GatewayServices(keys=keys, client=client, usage=usage, store=store, engine=engine)


def get_services(request: Request) -> GatewayServices:
    return request.app.state.services
