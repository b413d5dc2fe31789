import json
import logging

import pytest

from genai_gateway.core import config as config_module
from genai_gateway.core.config import load_config
from genai_gateway.core.exceptions import ConfigurationError
from genai_gateway.logging import JsonFormatter, reset_request_id, set_request_id

_ENV_VARS = list(config_module._ENV_OVERRIDES)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS + ["GENAI_CONFIG"]:
        monkeypatch.delenv(name, raising=False)
    load_config.cache_clear()
    yield
    load_config.cache_clear()


def test_load_config_reads_yaml(tmp_path):
    path = tmp_path / "genai.yaml"
    path.write_text(
        "genai:\n"
        "  model: gemini-pro\n"
        "  max_requests_per_day: 50\n"
        "  generation:\n"
        "    temperature: 0.9\n"
        "redis:\n"
        "  url: redis://cache:6379/2\n"
    )

    config = load_config(path)

    assert config.genai.model == "gemini-pro"
    assert config.genai.max_requests_per_day == 50
    assert config.genai.max_consecutive_failures == 5
    assert config.genai.generation.temperature == 0.9
    assert config.genai.generation.top_p == 0.95
    assert config.redis.url == "redis://cache:6379/2"
    assert config.redis.usage_prefix == "genai:key:"


def test_environment_overrides_file_values(tmp_path, monkeypatch):
    path = tmp_path / "genai.yaml"
    path.write_text("genai:\n  model: from-file\n")
    monkeypatch.setenv("GENAI_MODEL", "from-env")
    monkeypatch.setenv("GENAI_API_KEYS", "a, b")
    monkeypatch.setenv("GENAI_MAX_OUTPUT_TOKENS", "2048")
    monkeypatch.setenv("REDIS_URL", "redis://other:6379/0")

    config = load_config(path)

    assert config.genai.model == "from-env"
    assert config.genai.api_keys == "a, b"
    assert config.genai.generation.max_output_tokens == 2048
    assert config.redis.url == "redis://other:6379/0"


def test_missing_file_falls_back_to_defaults(tmp_path):
    config = load_config(tmp_path / "absent.yaml")

    assert config.genai.max_retries == 3
    assert config.genai.base_delay_ms == 1000


def test_invalid_env_value_is_configuration_error(tmp_path, monkeypatch):
    monkeypatch.setenv("GENAI_MAX_REQUESTS_PER_DAY", "many")

    with pytest.raises(ConfigurationError):
        load_config(tmp_path / "absent.yaml")


def test_invalid_file_value_is_configuration_error(tmp_path):
    path = tmp_path / "genai.yaml"
    path.write_text("genai:\n  max_retries: 0\n")

    with pytest.raises(ConfigurationError):
        load_config(path)


def test_json_formatter_includes_extra_fields_and_request_id():
    record = logging.makeLogRecord(
        {
            "name": "genai.keys",
            "levelname": "WARNING",
            "levelno": logging.WARNING,
            "msg": "Key %s failed",
            "args": ("abc",),
            "event": "key_failure",
            "key_hash": "abc",
        }
    )
    token = set_request_id("req-1")
    try:
        record.request_id = "req-1"
        payload = json.loads(JsonFormatter().format(record))
    finally:
        reset_request_id(token)

    assert payload["message"] == "Key abc failed"
    assert payload["event"] == "key_failure"
    assert payload["key_hash"] == "abc"
    assert payload["request_id"] == "req-1"
    assert payload["level"] == "WARNING"
