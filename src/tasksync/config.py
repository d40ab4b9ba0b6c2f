# src/tasksync/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "TASKSYNC"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv() -> None:
    """Load a local .env (if any). Real environment variables win."""
    load_dotenv(override=False)


_load_dotenv()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


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

    # ---- Connector flags ----
    console_enabled: bool

    # ---- REST API ----
    api_base_url: str
    api_token: Optional[str]
    api_timeout_seconds: float

    # ---- Sync tuning ----
    sync_max_retries: int
    sync_retry_backoff_seconds: float

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    preferences_path: Path

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "tasksync").strip() or "tasksync"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        api_base_url = _env(_k("API_BASE_URL"), "http://localhost:3000").strip().rstrip("/")
        api_token = _env(_k("API_TOKEN"), "").strip() or None
        # A request that never resolves would leave its optimistic state pending
        # forever; the transport timeout turns it into a NetworkError + rollback.
        api_timeout_seconds = max(0.1, _env_float(_k("API_TIMEOUT_SECONDS"), 10.0))

        sync_max_retries = max(0, _env_int(_k("SYNC_MAX_RETRIES"), 0))
        sync_retry_backoff_seconds = max(0.0, _env_float(_k("SYNC_RETRY_BACKOFF_SECONDS"), 0.5))

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/tasksync"))
        preferences_path = _env_path(_k("PREFERENCES_PATH"), data_dir / "preferences.json")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            api_base_url=api_base_url,
            api_token=api_token,
            api_timeout_seconds=api_timeout_seconds,
            sync_max_retries=sync_max_retries,
            sync_retry_backoff_seconds=sync_retry_backoff_seconds,
            data_dir=data_dir,
            preferences_path=preferences_path,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
