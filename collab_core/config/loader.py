"""
Configuration management and loading.

Handles budget caps, rate-limit windows, gateway limits and storage
settings from YAML, with environment overrides.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

import yaml

SUPPORTED_PROVIDERS: FrozenSet[str] = frozenset({"openai", "anthropic", "gemini", "groq", "mistral"})


@dataclass(frozen=True)
class BudgetConfig:
    """Fixed daily spend caps in USD."""
    principal_daily: float = 10.00
    project_daily: float = 5.00

    def __post_init__(self):
        """Validate budget values are positive."""
        if self.principal_daily <= 0:
            raise ValueError("principal_daily budget must be > 0")
        if self.project_daily <= 0:
            raise ValueError("project_daily budget must be > 0")


@dataclass(frozen=True)
class RateLimitConfig:
    """Fixed-window throttle per principal."""
    window_seconds: int = 60
    max_requests: int = 30
    fail_open: bool = True

    def __post_init__(self):
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if self.max_requests <= 0:
            raise ValueError("max_requests must be > 0")


@dataclass(frozen=True)
class GatewayConfig:
    """Limits applied to metered AI calls."""
    max_prompt_length: int = 10000
    default_provider: str = "openai"
    default_model: str = "gpt-4"
    provider_timeout_seconds: float = 30.0
    providers: FrozenSet[str] = SUPPORTED_PROVIDERS

    def __post_init__(self):
        if self.max_prompt_length <= 0:
            raise ValueError("max_prompt_length must be > 0")
        if self.provider_timeout_seconds <= 0:
            raise ValueError("provider_timeout_seconds must be > 0")
        if self.default_provider not in self.providers:
            raise ValueError(f"default_provider must be one of: {sorted(self.providers)}")
        if not self.default_model:
            raise ValueError("default_model cannot be empty")


@dataclass(frozen=True)
class StorageConfig:
    db_path: str = "collab_core.db"


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log_level: str = "info"

    def with_env(self, environ: Optional[Dict[str, str]] = None) -> "AppConfig":
        """Overlay COLLAB_CORE_DB_PATH and COLLAB_CORE_LOG_LEVEL."""
        environ = os.environ if environ is None else environ
        config = self
        if environ.get("COLLAB_CORE_DB_PATH"):
            config = replace(config, storage=StorageConfig(db_path=environ["COLLAB_CORE_DB_PATH"]))
        if environ.get("COLLAB_CORE_LOG_LEVEL"):
            config = replace(config, log_level=environ["COLLAB_CORE_LOG_LEVEL"])
        return config

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "AppConfig":
        return cls().with_env(environ)


def default_config() -> AppConfig:
    return AppConfig()


_SECTION_KEYS = {
    "budget": {"principal_daily", "project_daily"},
    "rate_limit": {"window_seconds", "max_requests", "fail_open"},
    "gateway": {"max_prompt_length", "default_provider", "default_model", "provider_timeout_seconds"},
    "storage": {"db_path"},
}


def load_config(path: str) -> AppConfig:
    """Load and validate configuration from a YAML file.

    Every section is optional and falls back to defaults, but unknown
    keys are rejected so a typo never silently loosens a budget cap.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return default_config()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    allowed_top_keys = set(_SECTION_KEYS) | {"log_level"}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {name: _section(raw_config, name) for name in _SECTION_KEYS}

    budget = sections["budget"]
    rate_limit = sections["rate_limit"]
    gateway = sections["gateway"]
    storage = sections["storage"]

    log_level = raw_config.get("log_level", "info")
    if not isinstance(log_level, str):
        raise ValueError("'log_level' must be a string")

    return AppConfig(
        budget=BudgetConfig(
            principal_daily=_number(budget, "principal_daily", BudgetConfig.principal_daily, "budget"),
            project_daily=_number(budget, "project_daily", BudgetConfig.project_daily, "budget"),
        ),
        rate_limit=RateLimitConfig(
            window_seconds=_integer(rate_limit, "window_seconds", RateLimitConfig.window_seconds, "rate_limit"),
            max_requests=_integer(rate_limit, "max_requests", RateLimitConfig.max_requests, "rate_limit"),
            fail_open=_boolean(rate_limit, "fail_open", RateLimitConfig.fail_open, "rate_limit"),
        ),
        gateway=GatewayConfig(
            max_prompt_length=_integer(gateway, "max_prompt_length", GatewayConfig.max_prompt_length, "gateway"),
            default_provider=_string(gateway, "default_provider", GatewayConfig.default_provider, "gateway"),
            default_model=_string(gateway, "default_model", GatewayConfig.default_model, "gateway"),
            provider_timeout_seconds=_number(
                gateway, "provider_timeout_seconds", GatewayConfig.provider_timeout_seconds, "gateway"
            ),
        ),
        storage=StorageConfig(
            db_path=_string(storage, "db_path", StorageConfig.db_path, "storage"),
        ),
        log_level=log_level,
    )


def _section(raw_config: Dict[str, Any], name: str) -> Dict[str, Any]:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - _SECTION_KEYS[name]
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return data


def _number(data: Dict[str, Any], key: str, default: float, path: str) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    return float(value)


def _integer(data: Dict[str, Any], key: str, default: int, path: str) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' in {path} must be an integer")
    return value


def _boolean(data: Dict[str, Any], key: str, default: bool, path: str) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"'{key}' in {path} must be true or false")
    return value


def _string(data: Dict[str, Any], key: str, default: str, path: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ValueError(f"'{key}' in {path} must be a string")
    return value
