"""Application settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``FLEETZEN_``, nested via ``__``)
2. YAML config file (``config_path`` field or ``FLEETZEN_CONFIG_PATH`` env var)
3. Defaults defined here
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Enums for validated choices
# ---------------------------------------------------------------------------


class DatabaseEngine(enum.StrEnum):
    """Supported database engines."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class DatabaseConfig(BaseSettings):
    """On-device database settings."""

    model_config = SettingsConfigDict(
        env_prefix="FLEETZEN_DB__",
        case_sensitive=False,
    )

    engine: DatabaseEngine = Field(
        default=DatabaseEngine.SQLITE,
        description="Database backend: sqlite or postgresql",
    )
    dsn: str = Field(
        default="sqlite+aiosqlite:///./fleetzen_drafts.db",
        description="Async database connection string",
    )
    max_idle_connections: int = 5
    max_open_connections: int = 10
    debug_sql: bool = False


class DraftsConfig(BaseSettings):
    """Draft store policy settings."""

    model_config = SettingsConfigDict(
        env_prefix="FLEETZEN_DRAFTS__",
        case_sensitive=False,
    )

    retention_days: float = Field(
        default=7,
        gt=0,
        description="Days after creation before a draft expires",
    )
    max_photos: int = Field(default=2, ge=0, description="Maximum photos per draft")
    max_photo_bytes: int = Field(
        default=10 * 1024 * 1024,
        gt=0,
        description="Largest raw photo accepted before compression",
    )
    compress_photos: bool = True
    photo_max_dimension: int = 1920
    photo_quality: int = Field(default=85, ge=1, le=95)


class SyncConfig(BaseSettings):
    """Remote submission endpoint settings."""

    model_config = SettingsConfigDict(
        env_prefix="FLEETZEN_SYNC__",
        case_sensitive=False,
    )

    enabled: bool = True
    base_url: str = "http://localhost:3000"
    token: str = ""
    timeout: float = 30.0
    health_path: str = Field(
        default="/",
        description="Path probed to decide whether the backend is reachable",
    )


class MetricsConfig(BaseSettings):
    """Prometheus metrics settings."""

    model_config = SettingsConfigDict(
        env_prefix="FLEETZEN_METRICS__",
        case_sensitive=False,
    )

    enabled: bool = True


class NotificationsConfig(BaseSettings):
    """Event notification settings."""

    model_config = SettingsConfigDict(
        env_prefix="FLEETZEN_NOTIFICATIONS__",
        case_sensitive=False,
    )

    enabled: bool = True


class TaskConfig(BaseSettings):
    """Background task settings (periods in seconds)."""

    model_config = SettingsConfigDict(
        env_prefix="FLEETZEN_TASK__",
        case_sensitive=False,
    )

    enabled: bool = True
    reap_period: float = 3600
    sync_period: float = 300
    metrics_period: float = 15
    connectivity_period: float = 30


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    text = p.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Loads settings from environment variables (``FLEETZEN_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="FLEETZEN_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    debug: bool = False
    version: str = "0.1.0"
    agent_id: str = ""
    config_path: str = ""

    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    drafts: DraftsConfig = Field(default_factory=DraftsConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    task: TaskConfig = Field(default_factory=TaskConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        yaml_data = _load_yaml(config_path)
        # YAML values serve as defaults; env vars (already in *values*) win.
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                values[key] = {**val, **values[key]}
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))
