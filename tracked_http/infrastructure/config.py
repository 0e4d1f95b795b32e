"""
Configuration loader with Pydantic validation.

Supports:
- YAML file loading
- Environment variable overrides (TRACKED_HTTP_*)
- Keyword overrides for values only known in code (callables, headers)
"""

from pathlib import Path
from typing import Any, Callable, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from tracked_http import defaults


LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ObservabilityConfig(BaseModel):
    """Logging configuration."""

    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    @field_validator("log_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        if v.upper() not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(LOG_LEVELS)}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return v


class InstanceConfig(BaseModel):
    """Complete configuration of one tracked-http instance."""

    base_url: str = ""
    prefix: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: Optional[float] = None  # handed to aiohttp as-is

    # Lifecycle event logging
    log_events: bool = False
    event_log_level: str = "debug"

    default_cancel_message: Union[str, Callable[..., str]] = defaults.default_cancel_message
    default_error: Callable[[], BaseException] = defaults.default_error
    error_transformer: Callable[..., BaseException] = defaults.error_transformer

    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("timeout_seconds must be positive")
        return v

    @field_validator("event_log_level")
    @classmethod
    def validate_event_log_level(cls, v: str) -> str:
        if v.upper() not in LOG_LEVELS:
            raise ValueError(f"event_log_level must be one of {sorted(LOG_LEVELS)}")
        return v.lower()

    @property
    def full_base_url(self) -> str:
        """Base URL with the path prefix appended."""
        return f"{self.base_url}{self.prefix}"


class EnvOverrides(BaseSettings):
    """
    Settings read from the environment.

    Only variables that are set override the file or defaults.
    """

    base_url: Optional[str] = None
    prefix: Optional[str] = None
    timeout_seconds: Optional[float] = None
    log_level: Optional[str] = None
    log_format: Optional[str] = None

    class Config:
        env_prefix = "TRACKED_HTTP_"
        case_sensitive = False

    def as_config_dict(self) -> dict[str, Any]:
        """Shape the set values like InstanceConfig input."""
        values = self.model_dump(exclude_none=True)
        observability = {
            key: values.pop(key) for key in ("log_level", "log_format") if key in values
        }
        if observability:
            values["observability"] = observability
        return values


def load_yaml_config(path: Path) -> dict[str, Any]:
    """Load configuration from YAML file."""
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: str | Path | None = None, **overrides: Any) -> InstanceConfig:
    """
    Build an InstanceConfig.

    Priority (highest to lowest):
    1. Keyword overrides
    2. Environment variables
    3. Specified config file
    4. Defaults
    """
    config_dict: dict[str, Any] = {}

    if config_path:
        config_dict = load_yaml_config(Path(config_path))

    config_dict = deep_merge(config_dict, EnvOverrides().as_config_dict())
    config_dict = deep_merge(config_dict, overrides)

    return InstanceConfig(**config_dict)
