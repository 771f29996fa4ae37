# src/focus_sync/core/ports.py

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the remote store, the identity source and the user-notice sink
swappable, and lets tests substitute in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import StrEnum
from typing import Any, Protocol

from .identity import Identity

# Wire row as returned by the remote store: {"id": "...", "version": 3, ...}.
Row = dict[str, Any]


class RemoteStore(Protocol):
    """
    Tabular remote store (PostgREST-style).

    `match` is an equality filter: every key must equal its value. An update
    with {"id": ..., "version": ...} in `match` is the conditional write that
    optimistic locking depends on; the store must evaluate it atomically.
    """

    async def select(
            self,
            table: str,
            *,
            match: Mapping[str, Any] | None = None,
            order: str | None = None,
    ) -> list[Row]: ...

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row: ...

    async def update(
            self,
            table: str,
            values: Mapping[str, Any],
            *,
            match: Mapping[str, Any],
    ) -> list[Row]: ...

    async def delete(self, table: str, *, match: Mapping[str, Any]) -> int: ...


class IdentityProvider(Protocol):
    """Auth collaborator: None means "nobody signed in" (local-only mode)."""

    def current(self) -> Identity | None: ...


class NoticeLevel(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notifier(Protocol):
    """User-facing notices (toasts in a GUI, printed lines in the console)."""

    def notify(self, level: NoticeLevel, title: str, message: str) -> None: ...


class LocalTaskRepo(Protocol):
    """Local-only fallback store used when no identity is present."""

    def list_tasks(self) -> Sequence[Any]: ...
    def get_task(self, task_id: str) -> Any | None: ...
    def insert_task(self, task: Any) -> None: ...
    def update_task_fields(self, task_id: str, fields: Mapping[str, Any]) -> Any | None: ...
    def delete_task(self, task_id: str) -> bool: ...
    def next_position(self) -> int: ...
    def list_subtasks(self, task_id: str) -> Sequence[Any]: ...
    def get_subtask(self, subtask_id: str) -> Any | None: ...
    def insert_subtask(self, subtask: Any) -> None: ...
    def update_subtask_fields(self, subtask_id: str, fields: Mapping[str, Any]) -> Any | None: ...
    def delete_subtask(self, task_id: str, subtask_id: str) -> bool: ...
