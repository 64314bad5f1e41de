"""
esupgrade Configuration System
==============================
Centralized, validated configuration with environment variable overrides.
"""

import os
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field

import yaml

from esupgrade.core.exceptions import ConfigurationError


@dataclass(frozen=True)
class ElasticsearchConfig:
    url: str = "http://localhost:9200"
    request_timeout: float = 60.0
    keep_alive: str = "5m"  # scroll cursor keep-alive window
    scroll_size: int = 100
    model_index: str = ".model"


@dataclass(frozen=True)
class MongoConfig:
    uri: str = "mongodb://localhost:27017"
    database: str = "analytics-backend"
    server_selection_timeout_ms: int = 5000


@dataclass(frozen=True)
class RetryConfig:
    """Backoff applied to documents a bulk write rejected for capacity reasons."""
    max_attempts: int = 5
    factor: float = 3.0
    min_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    randomize: bool = True


@dataclass(frozen=True)
class ObservabilityConfig:
    log_level: str = "INFO"
    json_logs: bool = False


@dataclass(frozen=True)
class UpgradeConfig:
    """Root configuration for an upgrade run."""

    model_version: str = "2"
    elasticsearch: ElasticsearchConfig = field(default_factory=ElasticsearchConfig)
    mongodb: MongoConfig = field(default_factory=MongoConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)


def _env_override(key: str, default):
    """Check for ESUPGRADE_<KEY> environment variable override."""
    env_key = f"ESUPGRADE_{key.upper()}"
    val = os.environ.get(env_key)
    if val is None:
        return default
    # Type coercion based on the default's type
    if isinstance(default, bool):
        return val.lower() in ("true", "1", "yes")
    if isinstance(default, int):
        return int(val)
    if isinstance(default, float):
        return float(val)
    return val


def _validate(config: UpgradeConfig) -> UpgradeConfig:
    if not config.model_version:
        raise ConfigurationError("model_version", "Target model version must not be empty")

    retry = config.retry
    if retry.max_attempts < 1:
        raise ConfigurationError(
            "retry.max_attempts", f"Must be at least 1, got {retry.max_attempts}"
        )
    if retry.factor < 1:
        raise ConfigurationError(
            "retry.factor", f"Backoff factor must be >= 1, got {retry.factor}"
        )
    if retry.min_delay_seconds < 0 or retry.min_delay_seconds > retry.max_delay_seconds:
        raise ConfigurationError(
            "retry.min_delay_seconds",
            f"Must be within [0, max_delay_seconds={retry.max_delay_seconds}], "
            f"got {retry.min_delay_seconds}",
        )

    es = config.elasticsearch
    if es.scroll_size < 1:
        raise ConfigurationError(
            "elasticsearch.scroll_size", f"Must be positive, got {es.scroll_size}"
        )
    if not es.model_index:
        raise ConfigurationError("elasticsearch.model_index", "Must not be empty")

    return config


def load_config(path: Optional[Path] = None) -> UpgradeConfig:
    """
    Load configuration from YAML file with environment variable overrides.

    Priority: ENV > YAML > defaults.

    Args:
        path: Path to config.yaml. If None, searches ./config.yaml.

    Returns:
        Validated UpgradeConfig instance.

    Raises:
        ConfigurationError: If a value is out of range.
    """
    if path is None:
        candidates = [
            Path("config.yaml"),
            Path(__file__).parent.parent.parent.parent / "config.yaml",
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    raw = {}
    if path is not None and path.exists():
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
            raw = loaded.get("esupgrade") or {}

    # YAML may hold the version as an int; versions are compared as strings
    model_version = str(_env_override("MODEL_VERSION", raw.get("model_version", "2")))

    es_raw = raw.get("elasticsearch") or {}
    elasticsearch = ElasticsearchConfig(
        url=_env_override("ELASTICSEARCH_URL", es_raw.get("url", "http://localhost:9200")),
        request_timeout=float(_env_override(
            "ELASTICSEARCH_REQUEST_TIMEOUT", float(es_raw.get("request_timeout", 60.0))
        )),
        keep_alive=_env_override("ELASTICSEARCH_KEEP_ALIVE", es_raw.get("keep_alive", "5m")),
        scroll_size=_env_override("ELASTICSEARCH_SCROLL_SIZE", int(es_raw.get("scroll_size", 100))),
        model_index=_env_override("ELASTICSEARCH_MODEL_INDEX", es_raw.get("model_index", ".model")),
    )

    mongo_raw = raw.get("mongodb") or {}
    mongodb = MongoConfig(
        uri=_env_override("MONGODB_URI", mongo_raw.get("uri", "mongodb://localhost:27017")),
        database=_env_override("MONGODB_DATABASE", mongo_raw.get("database", "analytics-backend")),
        server_selection_timeout_ms=_env_override(
            "MONGODB_SERVER_SELECTION_TIMEOUT_MS",
            int(mongo_raw.get("server_selection_timeout_ms", 5000)),
        ),
    )

    retry_raw = raw.get("retry") or {}
    retry = RetryConfig(
        max_attempts=_env_override("RETRY_MAX_ATTEMPTS", int(retry_raw.get("max_attempts", 5))),
        factor=_env_override("RETRY_FACTOR", float(retry_raw.get("factor", 3.0))),
        min_delay_seconds=_env_override(
            "RETRY_MIN_DELAY_SECONDS", float(retry_raw.get("min_delay_seconds", 1.0))
        ),
        max_delay_seconds=_env_override(
            "RETRY_MAX_DELAY_SECONDS", float(retry_raw.get("max_delay_seconds", 60.0))
        ),
        randomize=_env_override("RETRY_RANDOMIZE", bool(retry_raw.get("randomize", True))),
    )

    obs_raw = raw.get("observability") or {}
    observability = ObservabilityConfig(
        log_level=_env_override("LOG_LEVEL", obs_raw.get("log_level", "INFO")),
        json_logs=_env_override("JSON_LOGS", bool(obs_raw.get("json_logs", False))),
    )

    return _validate(UpgradeConfig(
        model_version=model_version,
        elasticsearch=elasticsearch,
        mongodb=mongodb,
        retry=retry,
        observability=observability,
    ))


# Module-level singleton (lazy-loaded)
_CONFIG: Optional[UpgradeConfig] = None


def get_config() -> UpgradeConfig:
    """Get or initialize the global config singleton."""
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config()
    return _CONFIG


def reset_config():
    """Reset the global config singleton (useful for testing)."""
    global _CONFIG
    _CONFIG = None
