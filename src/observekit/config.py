"""Configuration loading and validation."""

from __future__ import annotations

import copy
import os
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from observekit.errors import ConfigError, ConfigNotFoundError

__all__ = [
    "Config",
    "ClientSettings",
    "LoggingSettings",
    "MetricsSettings",
    "ObservabilitySettings",
    "TracingSettings",
]

ENV_PREFIX = "OBSERVEKIT_"


class Config:
    """Configuration accessor with dot-path key support."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = data or {}

    @classmethod
    def load(cls, yaml_path: str) -> Config:
        """Load configuration from a YAML file.

        Raises:
            ConfigNotFoundError: If the file does not exist.
            ConfigError: If the YAML is invalid or the top level is not a mapping.
        """
        if not os.path.isfile(yaml_path):
            raise ConfigNotFoundError(config_path=yaml_path)

        with open(yaml_path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {yaml_path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration root must be a mapping, got {type(data).__name__}")
        return cls(data)

    def with_env(self, environ: Mapping[str, str] | None = None, prefix: str = ENV_PREFIX) -> Config:
        """Return a copy with environment variables overlaid.

        ``OBSERVEKIT_OBSERVABILITY__TRACING__EXPORTER=stdout`` sets
        ``observability.tracing.exporter``. Values are parsed as YAML scalars.
        """
        environ = os.environ if environ is None else environ
        data = copy.deepcopy(self._data)
        for name, raw in environ.items():
            if not name.startswith(prefix) or len(name) == len(prefix):
                continue
            parts = [p.lower() for p in name[len(prefix):].split("__") if p]
            if not parts:
                continue
            current = data
            for part in parts[:-1]:
                node = current.get(part)
                if not isinstance(node, dict):
                    node = {}
                    current[part] = node
                current = node
            try:
                current[parts[-1]] = yaml.safe_load(raw)
            except yaml.YAMLError:
                current[parts[-1]] = raw
        return Config(data)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, prefix: str = ENV_PREFIX) -> Config:
        """Build a configuration from environment variables only."""
        return cls().with_env(environ, prefix)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dot-path key."""
        parts = key.split(".")
        current: Any = self._data
        for part in parts:
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    @property
    def data(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)


class TracingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    exporter: Literal["none", "stdout", "memory", "otlp"] = "none"
    sampling_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    sampling_strategy: Literal["full", "proportional", "error_first", "off"] = "full"
    otlp_endpoint: str | None = None
    service_name: str = "observekit"
    max_spans: int = Field(default=10_000, gt=0)


class MetricsSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    buckets: list[float] | None = None

    @field_validator("buckets")
    @classmethod
    def _buckets_positive(cls, value: list[float] | None) -> list[float] | None:
        if value is not None and any(b <= 0 for b in value):
            raise ValueError("histogram buckets must be positive")
        return value


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    logger_name: str = "observekit.observations"


class ObservabilitySettings(BaseModel):
    """Validated ``observability`` section: which backends receive observations."""

    model_config = ConfigDict(extra="forbid")

    tracing: TracingSettings = Field(default_factory=TracingSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    common_tags: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_config(cls, config: Config) -> ObservabilitySettings:
        """Validate the ``observability`` section of *config*.

        Raises:
            ConfigError: If the section does not match the schema.
        """
        section = config.get("observability", {}) or {}
        try:
            return cls.model_validate(section)
        except ValidationError as e:
            raise ConfigError(f"Invalid observability configuration: {e}", cause=e) from e


class ClientSettings(BaseModel):
    """Validated ``client`` section for the instrumented HTTP client."""

    model_config = ConfigDict(extra="forbid")

    base_url: str | None = None
    url: str = "http://localhost:7654/foo"
    timeout: float = Field(default=10.0, gt=0)

    @classmethod
    def from_config(cls, config: Config) -> ClientSettings:
        section = config.get("client", {}) or {}
        try:
            return cls.model_validate(section)
        except ValidationError as e:
            raise ConfigError(f"Invalid client configuration: {e}", cause=e) from e
