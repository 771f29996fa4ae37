# src/focus_sync/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..tasks.local_store import LocalTaskStore
from ..tasks.repository import TaskRepository
from .identity import SessionIdentity
from .ports import RemoteStore


@dataclass
class AppState:
    # Store Settings on the state for easy access in command handlers.
    settings: Any

    identity: SessionIdentity
    remote: RemoteStore
    local: LocalTaskStore
    repository: TaskRepository

    # "postgrest" or "memory" (offline demo).
    remote_kind: str = "memory"
