# tests/test_config_and_bootstrap.py

from __future__ import annotations

from pathlib import Path

import pytest

from focus_sync.cli.bootstrap import create_initial_state, shutdown_state
from focus_sync.config import Settings
from focus_sync.remote.memory import InMemoryRemoteStore
from focus_sync.remote.postgrest import PostgrestStore

from .fakes import FakeNotifier

_VARS = (
    "FOCUS_REST_URL",
    "SUPABASE_URL",
    "FOCUS_API_KEY",
    "SUPABASE_ANON_KEY",
    "FOCUS_USER_ID",
    "FOCUS_ACCESS_TOKEN",
    "FOCUS_DATA_DIR",
    "FOCUS_LOCAL_DB_PATH",
    "FOCUS_RETRY_MAX_RETRIES",
    "FOCUS_RETRY_INITIAL_DELAY_SECONDS",
    "FOCUS_CONFLICT_MAX_ATTEMPTS",
)


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _VARS:
        monkeypatch.setenv(name, "")
    return monkeypatch


def test_settings_defaults(clean_env) -> None:
    s = Settings.from_env()

    assert s.rest_url == ""
    assert s.user_id is None
    assert s.data_dir == Path(".local/focus")
    assert s.local_db_path == Path(".local/focus/tasks.sqlite3")
    assert s.retry_max_retries == 3
    assert s.retry_initial_delay == 1.0
    assert s.conflict_max_attempts == 3


def test_settings_read_prefixed_vars_and_fallbacks(clean_env, tmp_path: Path) -> None:
    clean_env.setenv("SUPABASE_URL", "https://db.example.test/")
    clean_env.setenv("SUPABASE_ANON_KEY", "anon")
    clean_env.setenv("FOCUS_USER_ID", "user-7")
    clean_env.setenv("FOCUS_DATA_DIR", str(tmp_path))
    clean_env.setenv("FOCUS_RETRY_MAX_RETRIES", "-4")
    clean_env.setenv("FOCUS_RETRY_INITIAL_DELAY_SECONDS", "not-a-number")
    clean_env.setenv("FOCUS_CONFLICT_MAX_ATTEMPTS", "5")

    s = Settings.from_env()

    assert s.rest_url == "https://db.example.test"
    assert s.api_key == "anon"
    assert s.user_id == "user-7"
    assert s.local_db_path == tmp_path / "tasks.sqlite3"
    assert s.retry_max_retries == 0
    assert s.retry_initial_delay == 1.0
    assert s.conflict_max_attempts == 5


@pytest.mark.asyncio
async def test_bootstrap_without_rest_url_uses_memory_store(settings) -> None:
    state = create_initial_state(settings=settings, notifier=FakeNotifier())

    assert isinstance(state.remote, InMemoryRemoteStore)
    assert state.remote_kind == "memory"
    assert state.identity.current() is None
    assert settings.local_db_path.exists()

    result = await state.repository.create("Local first")
    assert result.ok
    assert [t.title for t in state.local.list_tasks()] == ["Local first"]
    await shutdown_state(state)


@pytest.mark.asyncio
async def test_bootstrap_with_rest_url_and_user(settings) -> None:
    settings.rest_url = "https://db.example.test"
    settings.api_key = "anon"
    settings.user_id = "user-1"
    settings.access_token = "jwt"

    state = create_initial_state(settings=settings)

    assert isinstance(state.remote, PostgrestStore)
    assert state.remote_kind == "postgrest"
    assert state.identity.current().user_id == "user-1"
    await shutdown_state(state)
