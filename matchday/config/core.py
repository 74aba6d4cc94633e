"""Runtime settings for the scoring service.

Values resolve in this order (later wins):
1. model defaults
2. YAML file (``MATCHDAY_CONFIG`` or ``config/matchday.yaml`` under the project root)
3. environment variables (``MATCHDAY_`` prefix, ``__`` between nested keys)
4. keyword arguments passed to ``load_settings``
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from .db_url import ensure_config_database_url

_last_yaml_path: str | None = None


class DatabaseSettings(BaseModel):
    url: str | None = None
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    name: str | None = None
    echo: bool = False


class CacheSettings(BaseModel):
    url: str = "redis://127.0.0.1:6379/0"
    connect_timeout_sec: float = Field(default=5.0, gt=0)
    op_timeout_sec: float = Field(default=1.0, gt=0)
    max_consecutive_timeouts: int = Field(default=3, ge=1)
    key_template: str = "contest:{contest_id}:leaderboard"


class WorkerSettings(BaseModel):
    pool_size: int = Field(default=5, ge=1, le=64)
    queue_size: int = 100
    max_attempts: int = Field(default=5, ge=1)
    initial_backoff_sec: float = Field(default=0.25, ge=0)
    max_backoff_sec: float = Field(default=5.0, ge=0)
    requeue_delay_sec: float = Field(default=10.0, ge=0)
    shutdown_timeout_sec: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def _check_queue_size(self) -> "WorkerSettings":
        floor = max(100, 20 * self.pool_size)
        if self.queue_size < floor:
            raise ValueError(
                f"worker.queue_size={self.queue_size} must be at least {floor} "
                f"for pool_size={self.pool_size}"
            )
        return self


class LeaderboardSettings(BaseModel):
    rank_mode: Literal["lazy", "eager"] = "lazy"
    default_top_n: int = Field(default=50, ge=1)
    max_top_n: int = Field(default=100, ge=1)
    # Wait before rebuilding a dirty sorted set from the durable table.
    rebuild_delay_sec: float = Field(default=1.0, ge=0)


class StreakSettings(BaseModel):
    # When set, a risky prediction with zero base points breaks the streak.
    strict_risky: bool = False


class LoggingSettings(BaseModel):
    level: str = "INFO"
    json_logs: bool = False
    events_dir: str | None = None
    events_retention_size: int = 2 * 1024 * 1024

    @model_validator(mode="before")
    @classmethod
    def _alias_json(cls, data: dict[str, object]) -> dict[str, object]:
        if isinstance(data, dict) and "json" in data and "json_logs" not in data:
            data = dict(data)
            data["json_logs"] = data.pop("json")
        return data


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_yaml_path() -> Path | None:
    explicit = os.getenv("MATCHDAY_CONFIG")
    candidates: list[Path] = []
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())
    candidates.append(_project_root() / "config" / "matchday.yaml")
    for path in candidates:
        if path.is_file():
            return path
    return None


def last_yaml_path() -> str | None:
    return _last_yaml_path


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MATCHDAY_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    leaderboard: LeaderboardSettings = Field(default_factory=LeaderboardSettings)
    streak: StreakSettings = Field(default_factory=StreakSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        global _last_yaml_path
        sources: list[PydanticBaseSettingsSource] = [init_settings, env_settings, dotenv_settings]
        yaml_path = _resolve_yaml_path()
        if yaml_path is not None:
            _last_yaml_path = str(yaml_path)
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=yaml_path))
        sources.append(file_secret_settings)
        return tuple(sources)

    @model_validator(mode="after")
    def _compose_database_url(self) -> "Settings":
        ensure_config_database_url(self.database)
        return self


def load_settings(**overrides: Any) -> Settings:
    """Build settings from YAML, environment and explicit keyword overrides."""
    return Settings(**overrides)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the process-wide settings."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None


def sanitize_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Mask secrets before logging a settings dump."""
    out: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            out[key] = sanitize_dict(value)
        elif key in ("password", "url") and value:
            out[key] = "***"
        else:
            out[key] = value
    return out


__all__ = [
    "DatabaseSettings",
    "CacheSettings",
    "WorkerSettings",
    "LeaderboardSettings",
    "StreakSettings",
    "LoggingSettings",
    "Settings",
    "load_settings",
    "get_settings",
    "reset_settings",
    "sanitize_dict",
    "last_yaml_path",
]
