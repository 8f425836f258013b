"""
Root conftest — isolate every test from the developer's environment.

  - TASKAGENDA_* environment variables are removed so Settings() sees only
    what a test sets explicitly.
  - .env loading is disabled by patching Settings.model_config.
  - The settings and scheduler singletons are reset before and after each
    test; a scheduler left armed by a test is shut down so its timer can
    never fire into the next one.
"""
import os

import pytest


@pytest.fixture(autouse=True)
def _isolate_taskagenda_env(monkeypatch):
    for var in list(os.environ):
        if var.upper().startswith("TASKAGENDA_"):
            monkeypatch.delenv(var, raising=False)

    import taskagenda.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_prefix="TASKAGENDA_",
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)


@pytest.fixture(autouse=True)
def _reset_singletons():
    from taskagenda.config.settings import reset_settings
    from taskagenda.scheduler.scheduler import reset_scheduler

    reset_settings()
    reset_scheduler()
    yield
    reset_scheduler()
    reset_settings()
