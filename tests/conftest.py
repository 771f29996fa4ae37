# tests/conftest.py

from __future__ import annotations

import random
from pathlib import Path
from types import SimpleNamespace

import pytest

from focus_sync.core.identity import Identity, SessionIdentity
from focus_sync.core.state import AppState
from focus_sync.sync.retry import ResilientOperationRunner, RetryOptions
from focus_sync.tasks.local_store import LocalTaskStore
from focus_sync.tasks.repository import TaskRepository

from .fakes import USER_ID, FakeNotifier, RecordingSleep, ScriptedRemoteStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="focus-test",
        log_level="DEBUG",
        # No REST URL: bootstrap falls back to the in-memory remote store.
        rest_url="",
        api_key=None,
        request_timeout=5.0,
        user_id=None,
        access_token=None,
        # Paths (tmp per test run)
        data_dir=tmp_path / "data",
        local_db_path=tmp_path / "data" / "tasks.sqlite3",
        # Retry tuning
        retry_max_retries=3,
        retry_initial_delay=1.0,
        retry_max_delay=10.0,
        retry_backoff_factor=2.0,
        conflict_max_attempts=3,
    )


@pytest.fixture()
def sleeps() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def runner(sleeps: RecordingSleep) -> ResilientOperationRunner:
    return ResilientOperationRunner(
        RetryOptions(max_retries=3, initial_delay=1.0, max_delay=10.0, backoff_factor=2.0),
        sleep=sleeps,
        rng=random.Random(1234),
    )


@pytest.fixture()
def remote() -> ScriptedRemoteStore:
    return ScriptedRemoteStore()


@pytest.fixture()
def identity() -> SessionIdentity:
    return SessionIdentity(Identity(user_id=USER_ID, access_token="token-1"))


@pytest.fixture()
def local(tmp_path: Path) -> LocalTaskStore:
    return LocalTaskStore(tmp_path / "local.sqlite3")


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def repo(
    remote: ScriptedRemoteStore,
    identity: SessionIdentity,
    local: LocalTaskStore,
    runner: ResilientOperationRunner,
    notifier: FakeNotifier,
) -> TaskRepository:
    """Signed-in repository over a scripted in-memory remote store."""
    counter = iter(range(1, 10_000))
    return TaskRepository(
        remote=remote,
        identity=identity,
        local=local,
        runner=runner,
        notifier=notifier,
        conflict_max_attempts=3,
        id_factory=lambda: f"t{next(counter)}",
    )


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    remote: ScriptedRemoteStore,
    identity: SessionIdentity,
    local: LocalTaskStore,
    repo: TaskRepository,
) -> AppState:
    """AppState wired with the same fakes as `repo`."""
    return AppState(
        settings=settings,
        identity=identity,
        remote=remote,
        local=local,
        repository=repo,
        remote_kind="memory",
    )
