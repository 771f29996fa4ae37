# src/focus_sync/tasks/local_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from .task_models import Priority, SubTask, Task

logger = logging.getLogger(__name__)

# Column name -> declaration. Same shape as the remote table minus version/user_id.
_COLUMNS: dict[str, str] = {
    "title": "TEXT NOT NULL DEFAULT ''",
    "completed": "INTEGER NOT NULL DEFAULT 0",
    "created_at": "REAL NOT NULL DEFAULT 0",
    "updated_at": "REAL",
    "completed_at": "REAL",
    "pomodoro_count": "INTEGER NOT NULL DEFAULT 0",
    "priority": "TEXT",
    "tags": "TEXT NOT NULL DEFAULT '[]'",
    "due_date": "REAL",
    "notes": "TEXT",
    "position": "INTEGER NOT NULL DEFAULT 0",
    "parent_id": "TEXT",
    "estimated_duration": "INTEGER",
}

_SUBTASK_COLUMNS = frozenset({"title", "completed", "completed_at", "position"})


class LocalTaskStore:
    """
    SQLite task store for signed-out use.

    No versioning: the local user is the only writer. The schema is
    migration-safe (create if missing, ALTER TABLE ADD COLUMN for gaps).

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("LocalTaskStore ready db=%s total=%s", self._db_path, self.count_tasks())

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    completed INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    updated_at REAL,
                    completed_at REAL,
                    pomodoro_count INTEGER NOT NULL DEFAULT 0,
                    priority TEXT,
                    tags TEXT NOT NULL DEFAULT '[]',
                    due_date REAL,
                    notes TEXT,
                    position INTEGER NOT NULL DEFAULT 0,
                    parent_id TEXT,
                    estimated_duration INTEGER
                )
                """
            )

            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}
            for name, decl in _COLUMNS.items():
                if name in cols:
                    continue
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("LocalTaskStore migration: added column %s", name)

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_position ON tasks(position)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent_id)")
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS subtasks (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    completed INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    updated_at REAL,
                    completed_at REAL,
                    position INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_subtasks_task ON subtasks(task_id, position)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _tags_to_str(tags: list[str] | None) -> str:
        return json.dumps(list(tags or []), ensure_ascii=False)

    @staticmethod
    def _str_to_tags(s: str | None) -> list[str]:
        if not s:
            return []
        try:
            val = json.loads(s)
        except json.JSONDecodeError:
            logger.warning("Bad tags JSON in local store: %r", s)
            return []
        return [str(t) for t in val] if isinstance(val, list) else []

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            completed=bool(row["completed"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"]) if row["updated_at"] is not None else None,
            completed_at=float(row["completed_at"]) if row["completed_at"] is not None else None,
            pomodoro_count=int(row["pomodoro_count"] or 0),
            priority=Priority.parse(row["priority"]),
            tags=self._str_to_tags(row["tags"]),
            due_date=float(row["due_date"]) if row["due_date"] is not None else None,
            notes=row["notes"],
            position=int(row["position"] or 0),
            parent_id=row["parent_id"],
            estimated_duration=int(row["estimated_duration"]) if row["estimated_duration"] is not None else None,
            version=None,
        )

    @classmethod
    def _to_column(cls, key: str, val: Any) -> Any:
        if key == "tags":
            return cls._tags_to_str(val)
        if key == "priority":
            return val.value if isinstance(val, Priority) else val
        if key == "completed":
            return 1 if val else 0
        return val

    # ---- public API ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def list_tasks(self) -> list[Task]:
        conn = self._get_conn()
        try:
            cur = conn.execute("SELECT * FROM tasks ORDER BY position ASC, created_at ASC")
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def get_task(self, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def next_position(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COALESCE(MAX(position), -1) + 1 FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def insert_task(self, task: Task) -> None:
        if not task.id or not task.title.strip():
            raise ValueError("task id and title are required")

        names = ["id", *_COLUMNS]
        values = [task.id] + [self._to_column(n, getattr(task, n)) for n in _COLUMNS]
        placeholders = ", ".join("?" for _ in names)

        conn = self._get_conn()
        try:
            conn.execute(f"INSERT INTO tasks({', '.join(names)}) VALUES ({placeholders})", values)
            conn.commit()
            logger.debug("Local task added id=%s position=%s", task.id, task.position)
        finally:
            conn.close()

    def update_task_fields(self, task_id: str, fields: Mapping[str, Any]) -> Task | None:
        """Apply normalized fields; returns the updated task, or None if it does not exist."""
        sets: list[str] = []
        params: list[Any] = []
        for key, val in fields.items():
            if key not in _COLUMNS:
                raise ValueError(f"unknown column: {key}")
            sets.append(f"{key} = ?")
            params.append(self._to_column(key, val))

        if not sets:
            return self.get_task(task_id)

        sets.append("updated_at = ?")
        params.append(time.time())
        params.append(task_id)

        conn = self._get_conn()
        try:
            cur = conn.execute(f"UPDATE tasks SET {', '.join(sets)} WHERE id = ?", params)
            conn.commit()
            if cur.rowcount != 1:
                return None
        finally:
            conn.close()
        return self.get_task(task_id)

    def delete_task(self, task_id: str) -> bool:
        """Delete a task, its descendants and their subtasks (mirrors the remote cascade)."""
        conn = self._get_conn()
        try:
            ids = [
                str(r["id"])
                for r in conn.execute(
                    """
                    WITH RECURSIVE doomed(id) AS (
                        SELECT id FROM tasks WHERE id = ?
                        UNION ALL
                        SELECT t.id FROM tasks t JOIN doomed d ON t.parent_id = d.id
                    )
                    SELECT id FROM doomed
                    """,
                    (task_id,),
                ).fetchall()
            ]
            if not ids:
                return False

            marks = ", ".join("?" for _ in ids)
            conn.execute(f"DELETE FROM subtasks WHERE task_id IN ({marks})", ids)
            conn.execute(f"DELETE FROM tasks WHERE id IN ({marks})", ids)
            conn.commit()
            logger.debug("Local task deleted id=%s removed=%d", task_id, len(ids))
            return True
        finally:
            conn.close()

    # ---- subtasks ----

    def _row_to_subtask(self, row: sqlite3.Row) -> SubTask:
        return SubTask(
            id=str(row["id"]),
            task_id=str(row["task_id"]),
            title=str(row["title"] or ""),
            completed=bool(row["completed"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"]) if row["updated_at"] is not None else None,
            completed_at=float(row["completed_at"]) if row["completed_at"] is not None else None,
            position=int(row["position"] or 0),
            version=None,
        )

    def list_subtasks(self, task_id: str) -> list[SubTask]:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "SELECT * FROM subtasks WHERE task_id = ? ORDER BY position ASC, created_at ASC",
                (task_id,),
            )
            return [self._row_to_subtask(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def get_subtask(self, subtask_id: str) -> SubTask | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM subtasks WHERE id = ?", (subtask_id,)).fetchone()
            return self._row_to_subtask(row) if row else None
        finally:
            conn.close()

    def insert_subtask(self, subtask: SubTask) -> None:
        if not subtask.id or not subtask.task_id or not subtask.title.strip():
            raise ValueError("subtask id, task_id and title are required")

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO subtasks(id, task_id, title, completed, created_at, updated_at, completed_at, position)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    subtask.id,
                    subtask.task_id,
                    subtask.title,
                    1 if subtask.completed else 0,
                    subtask.created_at,
                    subtask.updated_at,
                    subtask.completed_at,
                    subtask.position,
                ),
            )
            conn.commit()
            logger.debug("Local subtask added id=%s task_id=%s", subtask.id, subtask.task_id)
        finally:
            conn.close()

    def update_subtask_fields(self, subtask_id: str, fields: Mapping[str, Any]) -> SubTask | None:
        sets: list[str] = []
        params: list[Any] = []
        for key, val in fields.items():
            if key not in _SUBTASK_COLUMNS:
                raise ValueError(f"unknown subtask column: {key}")
            sets.append(f"{key} = ?")
            params.append(self._to_column(key, val))

        if not sets:
            return self.get_subtask(subtask_id)

        sets.append("updated_at = ?")
        params.append(time.time())
        params.append(subtask_id)

        conn = self._get_conn()
        try:
            cur = conn.execute(f"UPDATE subtasks SET {', '.join(sets)} WHERE id = ?", params)
            conn.commit()
            if cur.rowcount != 1:
                return None
        finally:
            conn.close()
        return self.get_subtask(subtask_id)

    def delete_subtask(self, task_id: str, subtask_id: str) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM subtasks WHERE id = ? AND task_id = ?", (subtask_id, task_id))
            conn.commit()
            return cur.rowcount > 0
        finally:
            conn.close()
