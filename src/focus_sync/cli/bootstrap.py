# src/focus_sync/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations (remote store, local store, identity,
  retry runner, notifier) into a TaskRepository held by AppState.

No module-level client singletons: every collaborator is built here and
passed down explicitly.
"""

from __future__ import annotations

import contextlib
import logging

from ..config import get_settings
from ..core.identity import Identity, SessionIdentity
from ..core.notifier import LoggingNotifier
from ..core.ports import Notifier, RemoteStore
from ..core.state import AppState
from ..remote.memory import InMemoryRemoteStore
from ..remote.postgrest import PostgrestStore
from ..sync.retry import ResilientOperationRunner
from ..tasks.local_store import LocalTaskStore
from ..tasks.repository import TaskRepository

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.local_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, notifier: Notifier | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    identity = SessionIdentity()
    if settings.user_id:
        identity.sign_in(Identity(user_id=settings.user_id, access_token=settings.access_token))

    remote: RemoteStore
    remote_kind = "postgrest"
    try:
        remote = PostgrestStore(
            settings.rest_url,
            settings.api_key,
            identity=identity,
            timeout=settings.request_timeout,
        )
    except RuntimeError:
        # Fallback for demos / local runs without a hosted database.
        logger.info("No REST URL configured; using the in-memory remote store (offline demo).")
        remote = InMemoryRemoteStore()
        remote_kind = "memory"

    local = LocalTaskStore(settings.local_db_path)
    repository = TaskRepository(
        remote=remote,
        identity=identity,
        local=local,
        runner=ResilientOperationRunner.from_settings(settings),
        notifier=notifier or LoggingNotifier(),
        conflict_max_attempts=settings.conflict_max_attempts,
    )

    return AppState(
        settings=settings,
        identity=identity,
        remote=remote,
        local=local,
        repository=repository,
        remote_kind=remote_kind,
    )


async def shutdown_state(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    aclose = getattr(state.remote, "aclose", None)
    if aclose is None:
        return
    with contextlib.suppress(Exception):
        await aclose()
