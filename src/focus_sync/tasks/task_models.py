# src/focus_sync/tasks/task_models.py

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from ..core.errors import ValidationError

TASKS_TABLE = "tasks"
SUBTASKS_TABLE = "subtasks"


class Priority(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def parse(cls, raw: Any) -> Priority | None:
        if raw is None or raw == "":
            return None
        if isinstance(raw, Priority):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ValidationError(f"invalid priority: {raw!r}") from None


@dataclass(slots=True)
class Task:
    id: str
    title: str
    completed: bool = False
    created_at: float = field(default_factory=time.time)
    updated_at: float | None = None
    completed_at: float | None = None

    pomodoro_count: int = 0
    priority: Priority | None = None
    tags: list[str] = field(default_factory=list)
    due_date: float | None = None
    notes: str | None = None

    position: int = 0
    parent_id: str | None = None
    estimated_duration: int | None = None

    # Remote records start at 1; local-only tasks carry no version.
    version: int | None = None


@dataclass(slots=True)
class SubTask:
    """Checklist item inside a task; removed together with its task."""

    id: str
    task_id: str
    title: str
    completed: bool = False
    created_at: float = field(default_factory=time.time)
    updated_at: float | None = None
    completed_at: float | None = None
    position: int = 0
    version: int | None = None


# Fields a caller may change through update(); id/version/timestamps are owned by the store.
MUTABLE_FIELDS = frozenset(
    {
        "title",
        "completed",
        "pomodoro_count",
        "priority",
        "tags",
        "due_date",
        "notes",
        "position",
        "parent_id",
        "estimated_duration",
    }
)

SUBTASK_MUTABLE_FIELDS = frozenset({"title", "completed", "position"})

_TASK_FIELDS = frozenset(f.name for f in fields(Task))
_TIMESTAMP_FIELDS = ("created_at", "updated_at", "completed_at", "due_date")


# ---- wire <-> domain helpers ----

def ts_to_iso(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat()


def iso_to_ts(raw: Any) -> float | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw)
    try:
        dt = datetime.fromisoformat(str(raw).strip())
    except ValueError:
        raise ValidationError(f"invalid timestamp: {raw!r}") from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _req_str(row: Mapping[str, Any], key: str) -> str:
    val = row.get(key)
    if val is None or not str(val).strip():
        raise ValidationError(f"task row is missing {key}")
    return str(val)


def _opt_int(row: Mapping[str, Any], key: str, default: int | None = None) -> int | None:
    val = row.get(key)
    if val is None:
        return default
    if isinstance(val, bool):
        raise ValidationError(f"{key} must be an integer")
    try:
        return int(val)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer, got {val!r}") from None


def _tags(raw: Any) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("tags must be a list")
    return [str(t) for t in raw]


def _title(raw: Any) -> str:
    if raw is None or not str(raw).strip():
        raise ValidationError("title is required")
    return str(raw).strip()


def task_from_row(row: Mapping[str, Any]) -> Task:
    """
    Single translation point from a remote row to a Task.

    Validates once here so nothing downstream needs ad hoc casts.
    """
    version = _opt_int(row, "version")
    if version is None or version < 1:
        raise ValidationError(f"invalid version in task row: {row.get('version')!r}")

    return Task(
        id=_req_str(row, "id"),
        title=_req_str(row, "title"),
        completed=bool(row.get("completed") or False),
        created_at=iso_to_ts(row.get("created_at")) or 0.0,
        updated_at=iso_to_ts(row.get("updated_at")),
        completed_at=iso_to_ts(row.get("completed_at")),
        pomodoro_count=_opt_int(row, "pomodoro_count", 0) or 0,
        priority=Priority.parse(row.get("priority")),
        tags=_tags(row.get("tags")),
        due_date=iso_to_ts(row.get("due_date")),
        notes=row.get("notes"),
        position=_opt_int(row, "position", 0) or 0,
        parent_id=row.get("parent_id"),
        estimated_duration=_opt_int(row, "estimated_duration"),
        version=version,
    )


def task_to_row(task: Task, user_id: str) -> dict[str, Any]:
    """Full insert row for the remote store."""
    return {
        "id": task.id,
        "user_id": user_id,
        "title": task.title,
        "completed": task.completed,
        "created_at": ts_to_iso(task.created_at),
        "completed_at": ts_to_iso(task.completed_at),
        "pomodoro_count": task.pomodoro_count,
        "priority": task.priority.value if task.priority else None,
        "tags": list(task.tags),
        "due_date": ts_to_iso(task.due_date),
        "notes": task.notes,
        "position": task.position,
        "parent_id": task.parent_id,
        "estimated_duration": task.estimated_duration,
        "version": task.version or 1,
    }


def normalize_fields(updates: Mapping[str, Any], *, now: float | None = None) -> dict[str, Any]:
    """
    Validate a partial update in domain terms.

    Unknown or store-owned fields are rejected. `completed` carries
    `completed_at` along with it.
    """
    if not updates:
        raise ValidationError("no fields to update")

    out: dict[str, Any] = {}
    for key, val in updates.items():
        if key not in MUTABLE_FIELDS:
            if key in _TASK_FIELDS:
                raise ValidationError(f"field {key} cannot be updated directly")
            raise ValidationError(f"unknown task field: {key}")

        if key == "title":
            val = _title(val)
        elif key == "priority":
            val = Priority.parse(val)
        elif key == "tags":
            val = _tags(val)
        elif key in ("pomodoro_count", "position"):
            val = _opt_int({key: val}, key, 0)
            if val is not None and val < 0:
                raise ValidationError(f"{key} must be >= 0")
        elif key == "estimated_duration":
            val = _opt_int({key: val}, key)
        elif key == "due_date":
            val = iso_to_ts(val)
        elif key == "completed":
            val = bool(val)
        out[key] = val

    if "completed" in out:
        out["completed_at"] = (time.time() if now is None else now) if out["completed"] else None
    return out


def fields_to_row(updates: Mapping[str, Any]) -> dict[str, Any]:
    """Translate normalized domain fields into wire columns."""
    row: dict[str, Any] = {}
    for key, val in updates.items():
        if key in _TIMESTAMP_FIELDS:
            row[key] = ts_to_iso(val)
        elif key == "priority":
            row[key] = val.value if val else None
        else:
            row[key] = val
    return row


def apply_fields(task: Task, updates: Mapping[str, Any]) -> Task:
    """Return a copy of `task` with normalized fields applied (no version change)."""
    return replace(task, **dict(updates))


# ---- subtasks ----

def subtask_from_row(row: Mapping[str, Any]) -> SubTask:
    version = _opt_int(row, "version")
    if version is None or version < 1:
        raise ValidationError(f"invalid version in subtask row: {row.get('version')!r}")

    return SubTask(
        id=_req_str(row, "id"),
        task_id=_req_str(row, "task_id"),
        title=_req_str(row, "title"),
        completed=bool(row.get("completed") or False),
        created_at=iso_to_ts(row.get("created_at")) or 0.0,
        updated_at=iso_to_ts(row.get("updated_at")),
        completed_at=iso_to_ts(row.get("completed_at")),
        position=_opt_int(row, "position", 0) or 0,
        version=version,
    )


def subtask_to_row(subtask: SubTask) -> dict[str, Any]:
    return {
        "id": subtask.id,
        "task_id": subtask.task_id,
        "title": subtask.title,
        "completed": subtask.completed,
        "created_at": ts_to_iso(subtask.created_at),
        "completed_at": ts_to_iso(subtask.completed_at),
        "position": subtask.position,
        "version": subtask.version or 1,
    }


def normalize_subtask_fields(updates: Mapping[str, Any], *, now: float | None = None) -> dict[str, Any]:
    if not updates:
        raise ValidationError("no fields to update")

    out: dict[str, Any] = {}
    for key, val in updates.items():
        if key not in SUBTASK_MUTABLE_FIELDS:
            raise ValidationError(f"unknown or read-only subtask field: {key}")
        if key == "title":
            val = _title(val)
        elif key == "position":
            val = _opt_int({key: val}, key, 0)
            if val is not None and val < 0:
                raise ValidationError("position must be >= 0")
        else:
            val = bool(val)
        out[key] = val

    if "completed" in out:
        out["completed_at"] = (time.time() if now is None else now) if out["completed"] else None
    return out
