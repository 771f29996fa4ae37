# src/focus_sync/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time.
- Components accept settings explicitly; get_settings() is only for the CLI.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "FOCUS"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv() -> None:
    """Load a local .env (never overrides variables already set)."""
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

    # ---- Remote store (PostgREST-compatible) ----
    rest_url: str
    api_key: str | None
    request_timeout: float

    # ---- Identity (optional: absent => local-only mode) ----
    user_id: str | None
    access_token: str | None

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    local_db_path: Path

    # ---- Retry / conflict tuning ----
    retry_max_retries: int
    retry_initial_delay: float
    retry_max_delay: float
    retry_backoff_factor: float
    conflict_max_attempts: int

    @staticmethod
    def from_env() -> "Settings":
        _load_dotenv()

        app_name = _env(_k("APP_NAME"), "focus")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        # Accept the hosted service's own variable names as a fallback.
        rest_url = (_first_env(_k("REST_URL"), "SUPABASE_URL", default="") or "").strip().rstrip("/")
        api_key = _first_env(_k("API_KEY"), "SUPABASE_ANON_KEY", default=None)
        request_timeout = _env_float(_k("REQUEST_TIMEOUT_SECONDS"), 10.0)

        user_id = _first_env(_k("USER_ID"), default=None)
        access_token = _first_env(_k("ACCESS_TOKEN"), default=None)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/focus"))
        local_db_path = _env_path(_k("LOCAL_DB_PATH"), data_dir / "tasks.sqlite3")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            rest_url=rest_url,
            api_key=api_key,
            request_timeout=request_timeout,
            user_id=user_id,
            access_token=access_token,
            data_dir=data_dir,
            local_db_path=local_db_path,
            retry_max_retries=max(0, _env_int(_k("RETRY_MAX_RETRIES"), 3)),
            retry_initial_delay=max(0.0, _env_float(_k("RETRY_INITIAL_DELAY_SECONDS"), 1.0)),
            retry_max_delay=max(0.0, _env_float(_k("RETRY_MAX_DELAY_SECONDS"), 10.0)),
            retry_backoff_factor=max(1.0, _env_float(_k("RETRY_BACKOFF_FACTOR"), 2.0)),
            conflict_max_attempts=max(1, _env_int(_k("CONFLICT_MAX_ATTEMPTS"), 3)),
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
