"""Unit tests for configuration resolution.

Tests cover:
- Nested YAML lookups with defaults
- Environment variables taking precedence over YAML
- Type coercion of numeric and boolean settings
- Cache reset via reload_config
"""

import pytest

from repowiki.core import config
from repowiki.core.config import PipelineSettings, get_config_value, reload_config


ENV_NAMES = (
    "DATABASE_URL", "REPOSITORIES_PATH", "ENABLE_INCREMENTAL_UPDATE", "UPDATE_INTERVAL",
    "LLM_PROVIDER", "LLM_MODEL", "LLM_TEMPERATURE", "LLM_TIMEOUT_SECONDS", "OLLAMA_BASE_URL",
    "INGESTION_POLL_INTERVAL", "INGESTION_FAILURE_BACKOFF", "INCREMENTAL_POLL_INTERVAL",
    "MINIMAP_POLL_INTERVAL", "TRANSLATION_MAX_CONCURRENT",
)


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def yaml_config(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    values = {
        "llm": {"provider": "Ollama", "model": "qwen2.5", "timeout_seconds": 120},
        "incremental": {"enabled": "false", "update_interval_days": 3},
        "translation": {"max_concurrent": 2},
    }
    monkeypatch.setattr(config, "_config_cache", values)
    return values


# ── Tests: YAML lookups ──


class TestGetConfigValue:
    def test_nested_lookup(self, yaml_config):
        assert get_config_value("llm", "model") == "qwen2.5"

    def test_missing_key_returns_default(self, yaml_config):
        assert get_config_value("llm", "api_key", default="none") == "none"
        assert get_config_value("llm", "model", "deeper", default=1) == 1

    def test_reload_drops_cache(self, monkeypatch, tmp_path):
        monkeypatch.setattr(config, "_CONFIG_PATH", tmp_path / "missing.yaml")
        monkeypatch.setattr(config, "_config_cache", {"llm": {"model": "cached"}})

        reload_config()

        assert get_config_value("llm", "model", default="fallback") == "fallback"

    def test_reads_file(self, monkeypatch, tmp_path):
        path = tmp_path / "repowiki.yaml"
        path.write_text("database:\n  url: postgresql://db/wiki\n")
        monkeypatch.setattr(config, "_CONFIG_PATH", path)
        monkeypatch.setattr(config, "_config_cache", None)

        assert get_config_value("database", "url") == "postgresql://db/wiki"


# ── Tests: PipelineSettings ──


class TestPipelineSettings:
    def test_yaml_values_coerced(self, yaml_config):
        settings = PipelineSettings.from_env()

        assert settings.llm_provider == "ollama"
        assert settings.llm_timeout_seconds == 120.0
        assert settings.enable_incremental_update is False
        assert settings.update_interval_days == 3
        assert settings.translation_max_concurrent == 2

    def test_defaults_when_unset(self, yaml_config):
        settings = PipelineSettings.from_env()
        assert settings.database_url == "sqlite:///repowiki.db"
        assert settings.ingestion_poll_interval == 5.0

    def test_environment_wins(self, yaml_config, monkeypatch):
        monkeypatch.setenv("LLM_MODEL", "gpt-4o")
        monkeypatch.setenv("ENABLE_INCREMENTAL_UPDATE", "yes")
        monkeypatch.setenv("UPDATE_INTERVAL", "7")

        settings = PipelineSettings.from_env()

        assert settings.llm_model == "gpt-4o"
        assert settings.enable_incremental_update is True
        assert settings.update_interval_days == 7

    def test_empty_environment_value_ignored(self, yaml_config, monkeypatch):
        monkeypatch.setenv("LLM_MODEL", "")
        assert PipelineSettings.from_env().llm_model == "qwen2.5"
