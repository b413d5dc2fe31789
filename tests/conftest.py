from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from genai_gateway.storage.database import Base, build_session_factory
from genai_gateway.storage.models import GenAIApiUsage  # noqa: F401
from genai_gateway.storage.usage import UsageLog

NOON_UTC = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class MemoryCounterStore:
    """In-process stand-in for the Redis counter store with a manual clock."""

    def __init__(self, now: datetime = NOON_UTC) -> None:
        self.clock = now
        self.values: dict[str, str] = {}
        self.expires: dict[str, datetime] = {}

    def advance(self, seconds: float) -> None:
        self.clock += timedelta(seconds=seconds)

    def ttl(self, key: str) -> int | None:
        self._purge(key)
        expires_at = self.expires.get(key)
        if expires_at is None:
            return None
        return int((expires_at - self.clock).total_seconds())

    def _purge(self, key: str) -> None:
        expires_at = self.expires.get(key)
        if expires_at is not None and expires_at <= self.clock:
            self.values.pop(key, None)
            self.expires.pop(key, None)

    async def get(self, key: str) -> str | None:
        self._purge(key)
        return self.values.get(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        self.values[key] = value
        if ttl:
            self.expires[key] = self.clock + timedelta(seconds=ttl)
        else:
            self.expires.pop(key, None)

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        self._purge(key)
        if key in self.values:
            return False
        await self.set(key, value, ttl)
        return True

    async def incr(self, key: str, ttl: int) -> int:
        self._purge(key)
        count = int(self.values.get(key, "0")) + 1
        self.values[key] = str(count)
        if count == 1 or key not in self.expires:
            self.expires[key] = self.clock + timedelta(seconds=ttl)
        return count

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            self._purge(key)
            if self.values.pop(key, None) is not None:
                removed += 1
            self.expires.pop(key, None)
        return removed

    async def now(self) -> datetime:
        return self.clock


@pytest.fixture
def store() -> MemoryCounterStore:
    return MemoryCounterStore()


@pytest.fixture
def usage_log():
    """UsageLog over an in-memory SQLite database shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    yield UsageLog(build_session_factory(engine))
    engine.dispose()
