"""Application configuration loading utilities."""

from __future__ import annotations

import os
import pathlib
from functools import lru_cache
from typing import Any, Callable, Dict

import yaml
from pydantic import BaseModel, Field, ValidationError

from genai_gateway.core.exceptions import ConfigurationError

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR.parent / "config" / "genai.yaml"


class GenerationDefaults(BaseModel):
    temperature: float = 0.4
    top_p: float = 0.95
    top_k: int | None = 32
    max_output_tokens: int = 32768


class GenAISettings(BaseModel):
    api_keys: str = ""
    model: str = "gemini-2.5-flash"
    base_url: str = "https://generativelanguage.googleapis.com"
    generate_path: str = "/v1beta/models/{model}:generateContent"
    timeout_seconds: float = 60.0
    max_requests_per_day: int = Field(default=20, ge=1)
    max_consecutive_failures: int = Field(default=5, ge=1)
    failure_window_seconds: int = Field(default=3600, ge=1)
    max_retries: int = Field(default=3, ge=1)
    base_delay_ms: int = Field(default=1000, ge=0)
    generation: GenerationDefaults = Field(default_factory=GenerationDefaults)


class RedisSettings(BaseModel):
    url: str = "redis://localhost:6379/0"
    usage_prefix: str = "genai:key:"
    failure_prefix: str = "genai:failures:"


class DatabaseSettings(BaseModel):
    url: str = f"sqlite:///{BASE_DIR.parent / 'data' / 'genai_usage.db'}"


class LoggingSettings(BaseModel):
    level: str = "WARNING"
    file: str = "logs/app.jsonl"


class AppConfig(BaseModel):
    genai: GenAISettings = Field(default_factory=GenAISettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# env var -> (section, key path, converter)
_ENV_OVERRIDES: Dict[str, tuple[str, tuple[str, ...], Callable[[str], Any]]] = {
    "GENAI_API_KEYS": ("genai", ("api_keys",), str),
    "GENAI_MODEL": ("genai", ("model",), str),
    "GENAI_BASE_URL": ("genai", ("base_url",), str),
    "GENAI_MAX_REQUESTS_PER_DAY": ("genai", ("max_requests_per_day",), int),
    "GENAI_MAX_CONSECUTIVE_FAILURES": ("genai", ("max_consecutive_failures",), int),
    "GENAI_MAX_RETRIES": ("genai", ("max_retries",), int),
    "GENAI_BASE_DELAY_MS": ("genai", ("base_delay_ms",), int),
    "GENAI_TEMPERATURE": ("genai", ("generation", "temperature"), float),
    "GENAI_TOP_P": ("genai", ("generation", "top_p"), float),
    "GENAI_TOP_K": ("genai", ("generation", "top_k"), int),
    "GENAI_MAX_OUTPUT_TOKENS": ("genai", ("generation", "max_output_tokens"), int),
    "REDIS_URL": ("redis", ("url",), str),
    "DATABASE_URL": ("database", ("url",), str),
    "LOG_LEVEL": ("logging", ("level",), str),
    "LOG_FILE": ("logging", ("file",), str),
}


def _apply_env_overrides(raw: Dict[str, Any]) -> Dict[str, Any]:
    for env_name, (section, path, convert) in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value is None or value == "":
            continue
        try:
            converted = convert(value)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid value for {env_name}: {value!r}") from exc

        target = raw.setdefault(section, {})
        for key in path[:-1]:
            target = target.setdefault(key, {})
        target[path[-1]] = converted
    return raw


def _config_path(path: pathlib.Path | None) -> pathlib.Path:
    if path is not None:
        return path
    configured = os.getenv("GENAI_CONFIG")
    return pathlib.Path(configured) if configured else DEFAULT_CONFIG_PATH


@lru_cache(maxsize=1)
def load_config(path: pathlib.Path | None = None) -> AppConfig:
    """Load configuration from YAML, then apply environment overrides."""
    config_path = _config_path(path)
    raw: Dict[str, Any] = {}
    if config_path.exists():
        raw = yaml.safe_load(config_path.read_text()) or {}
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    try:
        return AppConfig(**_apply_env_overrides(raw))
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
