"""API key pool with round-robin selection, daily quotas and failure tracking.

Counters live in a shared ``CounterStore`` so several processes can draw from
the same pool. Only fingerprints of the keys ever reach the store or the logs.

Store layout, per key fingerprint ``fp``:

* ``<usage_prefix><fp>`` requests made today, expires at the next UTC midnight
* ``<usage_prefix><fp>:last_used`` epoch milliseconds of the last selection
* ``<failure_prefix><fp>`` consecutive failures, expires ``failure_window`` after
  the first failure of a streak
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

from genai_gateway.core.config import GenAISettings, RedisSettings
from genai_gateway.core.exceptions import AllKeysExhaustedError, ConfigurationError
from genai_gateway.keys.store import CounterStore

logger = logging.getLogger("genai.keys")

FINGERPRINT_LENGTH = 16


def fingerprint(api_key: str) -> str:
    """Return a short, stable identifier for an API key."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def parse_api_keys(raw: str | None) -> list[str]:
    """Split a comma-separated key list, dropping blanks."""
    if not raw:
        raise ConfigurationError("GENAI_API_KEYS is not configured")
    keys = [key.strip() for key in raw.split(",") if key.strip()]
    if not keys:
        raise ConfigurationError("No valid API keys found in GENAI_API_KEYS")
    return keys


def seconds_until_utc_midnight(now: datetime) -> int:
    """Seconds from ``now`` until the next UTC midnight, at least 1."""
    now_utc = now.astimezone(timezone.utc)
    midnight = datetime(now_utc.year, now_utc.month, now_utc.day, tzinfo=timezone.utc)
    midnight += timedelta(days=1)
    return max(1, int((midnight - now_utc).total_seconds()))


@dataclass(frozen=True)
class KeyStatus:
    key_hash: str
    requests_today: int
    max_requests: int
    consecutive_failures: int
    max_consecutive_failures: int
    last_used: datetime | None

    @property
    def available(self) -> bool:
        return (
            self.requests_today < self.max_requests
            and self.consecutive_failures < self.max_consecutive_failures
        )

    @property
    def remaining_requests(self) -> int:
        return max(0, self.max_requests - self.requests_today)

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["available"] = self.available
        data["last_used"] = self.last_used.isoformat() if self.last_used else None
        return data


class KeyPoolManager:
    """Hands out API keys in round-robin order, skipping unavailable ones."""

    def __init__(
        self,
        api_keys: Sequence[str],
        store: CounterStore,
        *,
        max_requests_per_day: int = 20,
        max_consecutive_failures: int = 5,
        failure_window_seconds: int = 3600,
        usage_prefix: str = "genai:key:",
        failure_prefix: str = "genai:failures:",
    ) -> None:
        keys = [key.strip() for key in api_keys if key and key.strip()]
        if not keys:
            raise ConfigurationError("No valid API keys found in GENAI_API_KEYS")

        self._keys = keys
        self._fingerprints = [fingerprint(key) for key in keys]
        self._store = store
        self._cursor = 0
        self.max_requests_per_day = max_requests_per_day
        self.max_consecutive_failures = max_consecutive_failures
        self.failure_window_seconds = failure_window_seconds
        self._usage_prefix = usage_prefix
        self._failure_prefix = failure_prefix

    @classmethod
    def from_settings(
        cls, genai: GenAISettings, redis: RedisSettings, store: CounterStore
    ) -> "KeyPoolManager":
        return cls(
            parse_api_keys(genai.api_keys),
            store,
            max_requests_per_day=genai.max_requests_per_day,
            max_consecutive_failures=genai.max_consecutive_failures,
            failure_window_seconds=genai.failure_window_seconds,
            usage_prefix=redis.usage_prefix,
            failure_prefix=redis.failure_prefix,
        )

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def fingerprints(self) -> list[str]:
        return list(self._fingerprints)

    async def initialize(self) -> None:
        """Create today's usage counters for keys the store has not seen yet."""
        ttl = seconds_until_utc_midnight(await self._store.now())
        created = 0
        for key_hash in self._fingerprints:
            if await self._store.set_if_absent(self._usage_key(key_hash), "0", ttl):
                created += 1
        logger.info(
            "Key pool initialized",
            extra={"event": "key_pool_init", "keys": len(self._keys), "new_counters": created},
        )

    async def next(self) -> str:
        """Return the next available key and count one request against it."""
        size = len(self._keys)
        start = self._cursor
        for offset in range(size):
            index = (start + offset) % size
            key_hash = self._fingerprints[index]
            status = await self._status(key_hash)
            if not status.available:
                continue

            self._cursor = (index + 1) % size
            count = await self._increment_usage(key_hash)
            logger.debug(
                "Selected key %s (%d/%d requests today)",
                key_hash,
                count,
                self.max_requests_per_day,
                extra={"event": "key_selected", "key_hash": key_hash},
            )
            return self._keys[index]

        logger.error(
            "All API keys exhausted",
            extra={"event": "keys_exhausted", "keys": size},
        )
        raise AllKeysExhaustedError(size)

    async def mark_success(self, api_key: str) -> None:
        """Clear the failure streak of a key."""
        await self._store.delete(self._failure_key(fingerprint(api_key)))

    async def mark_failure(self, api_key: str, reason: str) -> int:
        """Count one failure against a key; returns the current streak length."""
        key_hash = fingerprint(api_key)
        failures = await self._store.incr(
            self._failure_key(key_hash), self.failure_window_seconds
        )
        logger.warning(
            "Key %s failed (%d/%d): %s",
            key_hash,
            failures,
            self.max_consecutive_failures,
            reason,
            extra={"event": "key_failure", "key_hash": key_hash},
        )
        if failures >= self.max_consecutive_failures:
            logger.error(
                "Key %s disabled after %d consecutive failures",
                key_hash,
                failures,
                extra={"event": "key_disabled", "key_hash": key_hash},
            )
        return failures

    async def all_statuses(self) -> list[KeyStatus]:
        return [await self._status(key_hash) for key_hash in self._fingerprints]

    async def total_available_capacity(self) -> int:
        statuses = await self.all_statuses()
        return sum(status.remaining_requests for status in statuses if status.available)

    async def reset_all(self) -> None:
        """Drop every usage and failure counter of the configured keys."""
        for key_hash in self._fingerprints:
            usage_key = self._usage_key(key_hash)
            await self._store.delete(
                usage_key, f"{usage_key}:last_used", self._failure_key(key_hash)
            )
        logger.info("All key counters have been reset", extra={"event": "keys_reset"})

    async def _status(self, key_hash: str) -> KeyStatus:
        usage_key = self._usage_key(key_hash)
        requests, failures, last_used = await asyncio.gather(
            self._store.get(usage_key),
            self._store.get(self._failure_key(key_hash)),
            self._store.get(f"{usage_key}:last_used"),
        )
        return KeyStatus(
            key_hash=key_hash,
            requests_today=int(requests or 0),
            max_requests=self.max_requests_per_day,
            consecutive_failures=int(failures or 0),
            max_consecutive_failures=self.max_consecutive_failures,
            last_used=(
                datetime.fromtimestamp(int(last_used) / 1000, tz=timezone.utc)
                if last_used
                else None
            ),
        )

    async def _increment_usage(self, key_hash: str) -> int:
        now = await self._store.now()
        ttl = seconds_until_utc_midnight(now)
        usage_key = self._usage_key(key_hash)
        count = await self._store.incr(usage_key, ttl)
        await self._store.set(
            f"{usage_key}:last_used", str(int(now.timestamp() * 1000)), ttl=ttl
        )
        return count

    def _usage_key(self, key_hash: str) -> str:
        return f"{self._usage_prefix}{key_hash}"

    def _failure_key(self, key_hash: str) -> str:
        return f"{self._failure_prefix}{key_hash}"


__all__ = [
    "KeyPoolManager",
    "KeyStatus",
    "fingerprint",
    "parse_api_keys",
    "seconds_until_utc_midnight",
]
