# src/taskdeck/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time (without a token the app runs offline).
- Every sync knob is tunable without touching code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKDECK"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


# Real environment wins over .env.
load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Front end / background sync ----
    console_enabled: bool
    sync_enabled: bool

    # ---- Remote service ----
    api_token: str | None
    api_base_url: str
    request_timeout_seconds: float

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_path: Path
    actions_path: Path

    # ---- Sync tuning ----
    pull_interval_seconds: float
    push_interval_seconds: float
    push_batch_size: int
    max_attempts: int
    backoff_base_seconds: float
    backoff_cap_seconds: float
    backoff_jitter: float
    confirmed_grace_seconds: float

    @property
    def offline(self) -> bool:
        return not (self.api_token or "").strip()

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "taskdeck")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)
        sync_enabled = _env_bool(_k("SYNC_ENABLED"), True)

        # TODOIST_API_TOKEN is the name Todoist tooling commonly uses.
        api_token = _first_env(_k("API_TOKEN"), "TODOIST_API_TOKEN", default=None)
        api_base_url = _env(_k("API_BASE_URL"), "https://api.todoist.com/api/v1")
        request_timeout_seconds = _env_float(_k("REQUEST_TIMEOUT_SECONDS"), 10.0)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskdeck"))
        tasks_path = _env_path(_k("TASKS_PATH"), data_dir / "tasks.json")
        actions_path = _env_path(_k("ACTIONS_PATH"), data_dir / "pending_actions.json")

        pull_interval_seconds = _env_float(_k("PULL_INTERVAL_SECONDS"), 60.0)
        push_interval_seconds = _env_float(_k("PUSH_INTERVAL_SECONDS"), 5.0)
        push_batch_size = _env_int(_k("PUSH_BATCH_SIZE"), 16)
        max_attempts = _env_int(_k("MAX_ATTEMPTS"), 10)
        backoff_base_seconds = _env_float(_k("BACKOFF_BASE_SECONDS"), 2.0)
        backoff_cap_seconds = _env_float(_k("BACKOFF_CAP_SECONDS"), 300.0)
        backoff_jitter = _env_float(_k("BACKOFF_JITTER"), 0.2)
        confirmed_grace_seconds = _env_float(_k("CONFIRMED_GRACE_SECONDS"), 600.0)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            sync_enabled=sync_enabled,
            api_token=api_token,
            api_base_url=api_base_url,
            request_timeout_seconds=request_timeout_seconds,
            data_dir=data_dir,
            tasks_path=tasks_path,
            actions_path=actions_path,
            pull_interval_seconds=pull_interval_seconds,
            push_interval_seconds=push_interval_seconds,
            push_batch_size=push_batch_size,
            max_attempts=max_attempts,
            backoff_base_seconds=backoff_base_seconds,
            backoff_cap_seconds=backoff_cap_seconds,
            backoff_jitter=backoff_jitter,
            confirmed_grace_seconds=confirmed_grace_seconds,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
