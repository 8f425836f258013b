"""
config/settings.py — taskagenda Runtime Settings

Merges config.yaml (defaults/structure) with environment variables and an
optional .env file. Pydantic-powered — all fields are validated and typed.

  - SchedulerConfig picks the timer backend and id / history sizes
  - LoggingConfig rejects unknown log levels at parse time
  - load_settings() respects TASKAGENDA_CONFIG as a fallback when no
    explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading as _threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from taskagenda.exceptions import ConfigError


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_TIMER_BACKENDS = {"thread", "asyncio"}
_VALID_LOG_LEVELS     = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

CONFIG_ENV_VAR = "TASKAGENDA_CONFIG"
DEFAULT_CONFIG_PATH = Path("config/config.yaml")


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class SchedulerConfig(BaseModel):
    timer_backend: str = "thread"
    id_length: int = 10
    history_limit: int = 100

    @field_validator("timer_backend")
    @classmethod
    def _known_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in _VALID_TIMER_BACKENDS:
            raise ValueError(
                f"scheduler.timer_backend '{v}' is not supported. "
                f"Supported: {sorted(_VALID_TIMER_BACKENDS)}"
            )
        return v

    @field_validator("id_length")
    @classmethod
    def _sane_id_length(cls, v: int) -> int:
        if not (6 <= v <= 32):
            raise ValueError("scheduler.id_length must be between 6 and 32")
        return v

    @field_validator("history_limit")
    @classmethod
    def _non_negative_history(cls, v: int) -> int:
        if v < 0:
            raise ValueError("scheduler.history_limit must be >= 0")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 10
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper

    @field_validator("max_file_size_mb", "backup_count")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("logging file rotation values must be >= 1")
        return v


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    taskagenda runtime settings.

    Priority (highest to lowest):
      1. Environment variables (TASKAGENDA_SCHEDULER__TIMER_BACKEND=asyncio)
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKAGENDA_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML sections arrive as init kwargs; env and .env must win over them.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @field_validator("scheduler", mode="before")
    @classmethod
    def _coerce_scheduler(cls, v: Any) -> Any:
        return SchedulerConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def timer_backend(self) -> str:
        return self.scheduler.timer_backend

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.RLock()

_KNOWN_SECTIONS = {"scheduler", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse config file '{path}': {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level.")
    return data


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. TASKAGENDA_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings by merging config.yaml with environment variables and
    store the result as the process-wide singleton.

    Raises ConfigError when the YAML is malformed or a value fails validation.
    """
    global _singleton
    resolved_path = _resolve_config_path(config_path)
    yaml_data = _load_yaml(resolved_path)
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    try:
        instance = Settings(**init_kwargs)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in '{resolved_path}':\n{exc}") from exc

    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading it from the default
    config path on first use.

    Thread-safe: guarded by _singleton_lock to prevent double-initialisation
    if called concurrently before the first load completes.
    """
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        # Re-check inside the lock in case another thread just loaded it
        if _singleton is None:
            return load_settings()
        return _singleton


def reset_settings() -> None:
    """Drop the cached singleton so the next get_settings() reloads."""
    global _singleton
    with _singleton_lock:
        _singleton = None
