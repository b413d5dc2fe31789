from http import HTTPStatus

import pytest
from fastapi.testclient import TestClient

from genai_gateway.client.wrapper import GenerationClient
from genai_gateway.keys.manager import KeyPoolManager, fingerprint
from genai_gateway.main import create_app
from genai_gateway.services import GatewayServices
from genai_gateway.storage.usage import UsageRecord


class _UnusedProvider:
    provider_id = "unused"

    async def generate(self, api_key, model, contents, config):  # pragma: no cover - unused
        raise AssertionError("provider should not be called")


@pytest.fixture
def keys(store) -> KeyPoolManager:
    return KeyPoolManager(
        ["key-a", "key-b", "key-c"],
        store,
        max_requests_per_day=2,
        max_consecutive_failures=2,
    )


@pytest.fixture
def client(keys, usage_log):
    services = GatewayServices(
        keys=keys,
        client=GenerationClient(keys, _UnusedProvider(), usage_log),
        usage=usage_log,
    )
    with TestClient(create_app(services)) as test_client:
        yield test_client


def test_key_health_reports_statuses_and_summary(client, keys):
    client.portal.call(keys.next)
    client.portal.call(keys.next)
    client.portal.call(keys.next)
    client.portal.call(keys.next)
    for _ in range(2):
        client.portal.call(keys.mark_failure, "key-c", "quota exceeded")

    response = client.get("/admin/genai-usage/key-health")

    assert response.status_code == HTTPStatus.OK
    body = response.json()
    by_hash = {item["key_hash"]: item for item in body["keys"]}
    assert by_hash[fingerprint("key-a")]["requests_today"] == 2
    assert by_hash[fingerprint("key-a")]["available"] is False
    assert by_hash[fingerprint("key-b")]["available"] is True
    assert by_hash[fingerprint("key-c")]["consecutive_failures"] == 2
    assert body["total_available_requests"] == 1
    assert body["summary"] == {
        "total_keys": 3,
        "available_keys": 1,
        "exhausted_keys": 1,
        "failed_keys": 1,
    }
    assert "key-a" not in response.text


def test_reset_keys_clears_counters(client, keys, store):
    client.portal.call(keys.next)

    response = client.post("/admin/genai-usage/reset-keys")

    assert response.status_code == HTTPStatus.OK
    assert "reset" in response.json()["message"]
    assert store.values == {}


def test_stats_today_aggregates_usage(client, usage_log):
    client.portal.call(
        usage_log.record,
        UsageRecord(
            service_name="roadmaps",
            operation="map",
            model_name="gemini-2.5-flash",
            success=True,
            duration_ms=120,
            total_tokens=50,
        ),
    )
    client.portal.call(
        usage_log.record,
        UsageRecord(
            service_name="roadmaps",
            operation="reduce",
            model_name="gemini-2.5-flash",
            success=False,
            duration_ms=80,
            error_message="boom",
        ),
    )

    response = client.get("/admin/genai-usage/stats/today")

    assert response.status_code == HTTPStatus.OK
    body = response.json()
    assert body["total_requests"] == 2
    assert body["failed_requests"] == 1
    assert body["total_tokens"] == 50
    assert body["average_duration_ms"] == 100
    assert body["requests_by_service"] == {"roadmaps": 2}


def test_stats_unknown_window_is_404(client):
    response = client.get("/admin/genai-usage/stats/year")

    assert response.status_code == HTTPStatus.NOT_FOUND


def test_recent_errors_lists_failures(client, usage_log):
    client.portal.call(
        usage_log.record,
        UsageRecord(
            service_name="assessments",
            operation="generate_assessment",
            model_name="gemini-2.5-flash",
            success=False,
            error_message="AI generation failed",
        ),
    )

    response = client.get("/admin/genai-usage/recent-errors", params={"limit": 5})

    assert response.status_code == HTTPStatus.OK
    errors = response.json()["errors"]
    assert len(errors) == 1
    assert errors[0]["error_message"] == "AI generation failed"
