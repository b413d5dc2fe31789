from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from genai_gateway.client.wrapper import GenerationClient
from genai_gateway.keys.manager import KeyPoolManager
from genai_gateway.providers.base import GenerationRequest, ProviderResponse, TokenUsage
from genai_gateway.storage.usage import UsageRecord, start_of_day

EXPECTED_TOTAL = 3


def _record(**overrides) -> UsageRecord:
    values = {
        "service_name": "roadmaps",
        "operation": "generate_insights",
        "model_name": "gemini-2.5-flash",
        "success": True,
        "duration_ms": 100,
        "total_tokens": 10,
    }
    values.update(overrides)
    return UsageRecord(**values)


@pytest.mark.asyncio
async def test_successful_generation_round_trips_through_usage_log(store, usage_log):
    class Provider:
        provider_id = "static"

        async def generate(self, api_key, model, contents, config):
            return ProviderResponse(
                text="ok",
                usage=TokenUsage(input_tokens=12, output_tokens=30, total_tokens=42),
            )

    client = GenerationClient(KeyPoolManager(["key-a"], store), Provider(), usage_log)
    await client.generate(
        GenerationRequest(model="gemini-test", contents="hi"), "mentors", "match", "user-9"
    )

    [stored] = usage_log.recent(limit=5)
    assert stored["success"] is True
    assert stored["error_message"] is None
    assert (stored["input_tokens"], stored["output_tokens"], stored["total_tokens"]) == (12, 30, 42)
    assert stored["service_name"] == "mentors"
    assert stored["operation"] == "match"
    assert stored["user_id"] == "user-9"
    assert stored["model_name"] == "gemini-test"
    assert usage_log.recent_errors() == []


@pytest.mark.asyncio
async def test_record_and_get_preserves_fields(usage_log):
    record_id = await usage_log.record(
        _record(
            user_id="user-1",
            input_tokens=3,
            output_tokens=4,
            total_tokens=7,
            metadata={"key_hash": "abc", "attempts": 1},
        )
    )

    stored = usage_log.get(record_id)

    assert stored["success"] is True
    assert stored["error_message"] is None
    assert (stored["input_tokens"], stored["output_tokens"], stored["total_tokens"]) == (3, 4, 7)
    assert stored["user_id"] == "user-1"
    assert stored["metadata"] == {"key_hash": "abc", "attempts": 1}
    assert datetime.fromisoformat(stored["created_at"]).tzinfo is not None


@pytest.mark.asyncio
async def test_recent_errors_returns_failures_newest_first(usage_log):
    now = datetime.now(timezone.utc)
    await usage_log.record(_record(success=False, error_message="old", created_at=now - timedelta(hours=2)))
    await usage_log.record(_record(success=True))
    await usage_log.record(_record(success=False, error_message="new", created_at=now))

    errors = usage_log.recent_errors(limit=10)

    assert [item["error_message"] for item in errors] == ["new", "old"]


@pytest.mark.asyncio
async def test_stats_since_aggregates_window(usage_log):
    now = datetime.now(timezone.utc)
    await usage_log.record(_record(created_at=now - timedelta(days=3)))
    await usage_log.record(_record(duration_ms=200, total_tokens=5))
    await usage_log.record(
        _record(service_name="assessments", model_name="gemini-pro", duration_ms=400, total_tokens=None)
    )
    await usage_log.record(
        _record(success=False, duration_ms=None, total_tokens=None, error_message="boom")
    )

    stats = usage_log.stats_since(now - timedelta(hours=1))

    assert stats["total_requests"] == EXPECTED_TOTAL
    assert stats["successful_requests"] == 2
    assert stats["failed_requests"] == 1
    assert stats["total_tokens"] == 5
    assert stats["average_duration_ms"] == 200
    assert stats["requests_by_service"] == {"roadmaps": 2, "assessments": 1}
    assert stats["requests_by_model"] == {"gemini-2.5-flash": 2, "gemini-pro": 1}


def test_stats_since_empty_window(usage_log):
    stats = usage_log.stats_since(start_of_day())

    assert stats["total_requests"] == 0
    assert stats["average_duration_ms"] == 0
    assert stats["requests_by_service"] == {}
