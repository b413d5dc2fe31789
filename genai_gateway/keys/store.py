"""Shared counter store used for cross-process key bookkeeping."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

from redis.asyncio import Redis

# INCR plus EXPIRE in one server-side step. The TTL is applied when the key is
# created by this call or exists without an expiry.
_INCR_WITH_TTL = """
local count = redis.call('INCR', KEYS[1])
if count == 1 or redis.call('TTL', KEYS[1]) < 0 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return count
"""


class CounterStore(Protocol):
    """Atomic string-keyed counters with per-key expiry."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: int | None = None) -> None: ...

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool: ...

    async def incr(self, key: str, ttl: int) -> int: ...

    async def delete(self, *keys: str) -> int: ...

    async def now(self) -> datetime: ...


class RedisCounterStore:
    """``CounterStore`` backed by ``redis.asyncio``."""

    def __init__(self, client: Redis) -> None:
        self._client = client
        self._incr_script = client.register_script(_INCR_WITH_TTL)

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        value = await self._client.get(key)
        if isinstance(value, bytes):
            return value.decode()
        return value

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        await self._client.set(key, value, ex=ttl)

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        return bool(await self._client.set(key, value, ex=ttl, nx=True))

    async def incr(self, key: str, ttl: int) -> int:
        return int(await self._incr_script(keys=[key], args=[ttl]))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._client.delete(*keys))

    async def now(self) -> datetime:
        """Return the Redis server clock so expiry math matches the store."""
        seconds, microseconds = await self._client.time()
        return datetime.fromtimestamp(seconds + microseconds / 1_000_000, tz=timezone.utc)

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()


__all__ = ["CounterStore", "RedisCounterStore"]
