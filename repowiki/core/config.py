"""Configuration loading for RepoWiki.

Values resolve in order: environment variable (``.env`` is loaded first),
then ``config/repowiki.yaml``, then the built-in default.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from .constants import DEFAULT_LLM_TIMEOUT_SECONDS, DEFAULT_UPDATE_INTERVAL_DAYS

load_dotenv()

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path(
    os.getenv("REPOWIKI_CONFIG", Path(__file__).parent.parent.parent / "config" / "repowiki.yaml")
)
_config_cache: Optional[dict] = None


def _load_yaml_config() -> dict:
    global _config_cache
    if _config_cache is not None:
        return _config_cache

    if not _CONFIG_PATH.exists():
        logger.debug(f"Config file not found at {_CONFIG_PATH}, using defaults")
        _config_cache = {}
        return _config_cache

    with open(_CONFIG_PATH, "r") as f:
        _config_cache = yaml.safe_load(f) or {}
    logger.debug(f"Loaded config from {_CONFIG_PATH}")
    return _config_cache


def reload_config():
    """Drop the cached YAML so the next lookup re-reads it."""
    global _config_cache
    _config_cache = None


def get_config_value(*keys: str, default: Any = None) -> Any:
    """Walk nested YAML keys, e.g. ``get_config_value("llm", "provider")``."""
    node: Any = _load_yaml_config()
    for key in keys:
        if not isinstance(node, dict) or key not in node:
            return default
        node = node[key]
    return node


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _resolve(env_name: str, yaml_keys: tuple, default: Any) -> Any:
    env_value = os.getenv(env_name)
    if env_value is not None and env_value != "":
        return env_value
    return get_config_value(*yaml_keys, default=default)


@dataclass
class PipelineSettings:
    """Knobs consumed by the background workers and services."""

    database_url: str = "sqlite:///repowiki.db"
    repositories_path: str = "repositories"

    enable_incremental_update: bool = True
    update_interval_days: int = DEFAULT_UPDATE_INTERVAL_DAYS

    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.1
    llm_timeout_seconds: float = DEFAULT_LLM_TIMEOUT_SECONDS
    ollama_base_url: str = "http://localhost:11434"

    ingestion_poll_interval: float = 5.0
    ingestion_failure_backoff: float = 5.0
    incremental_poll_interval: float = 60.0
    minimap_poll_interval: float = 10.0
    translation_max_concurrent: int = 4

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls(
            database_url=_resolve("DATABASE_URL", ("database", "url"), cls.database_url),
            repositories_path=_resolve(
                "REPOSITORIES_PATH", ("git", "repositories_path"), cls.repositories_path
            ),
            enable_incremental_update=_parse_bool(_resolve(
                "ENABLE_INCREMENTAL_UPDATE", ("incremental", "enabled"), cls.enable_incremental_update
            )),
            update_interval_days=int(_resolve(
                "UPDATE_INTERVAL", ("incremental", "update_interval_days"), cls.update_interval_days
            )),
            llm_provider=str(_resolve("LLM_PROVIDER", ("llm", "provider"), cls.llm_provider)).lower(),
            llm_model=_resolve("LLM_MODEL", ("llm", "model"), cls.llm_model),
            llm_temperature=float(_resolve(
                "LLM_TEMPERATURE", ("llm", "temperature"), cls.llm_temperature
            )),
            llm_timeout_seconds=float(_resolve(
                "LLM_TIMEOUT_SECONDS", ("llm", "timeout_seconds"), cls.llm_timeout_seconds
            )),
            ollama_base_url=_resolve("OLLAMA_BASE_URL", ("llm", "ollama_base_url"), cls.ollama_base_url),
            ingestion_poll_interval=float(_resolve(
                "INGESTION_POLL_INTERVAL", ("ingestion", "poll_interval"), cls.ingestion_poll_interval
            )),
            ingestion_failure_backoff=float(_resolve(
                "INGESTION_FAILURE_BACKOFF", ("ingestion", "failure_backoff"),
                cls.ingestion_failure_backoff,
            )),
            incremental_poll_interval=float(_resolve(
                "INCREMENTAL_POLL_INTERVAL", ("incremental", "poll_interval"),
                cls.incremental_poll_interval,
            )),
            minimap_poll_interval=float(_resolve(
                "MINIMAP_POLL_INTERVAL", ("minimap", "poll_interval"), cls.minimap_poll_interval
            )),
            translation_max_concurrent=int(_resolve(
                "TRANSLATION_MAX_CONCURRENT", ("translation", "max_concurrent"),
                cls.translation_max_concurrent,
            )),
        )
