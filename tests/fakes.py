# tests/fakes.py

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from focus_sync.core.ports import NoticeLevel, Row
from focus_sync.remote.memory import InMemoryRemoteStore
from focus_sync.tasks.task_models import TASKS_TABLE

USER_ID = "user-1"


def task_row(task_id: str, *, user_id: str = USER_ID, version: int = 1, **fields: Any) -> Row:
    """A remote task row as the hosted store would return it."""
    row: Row = {
        "id": task_id,
        "user_id": user_id,
        "title": f"Task {task_id}",
        "completed": False,
        "created_at": "2024-01-01T00:00:00+00:00",
        "updated_at": "2024-01-01T00:00:00+00:00",
        "completed_at": None,
        "pomodoro_count": 0,
        "priority": None,
        "tags": [],
        "due_date": None,
        "notes": None,
        "position": 0,
        "parent_id": None,
        "estimated_duration": None,
        "version": version,
    }
    row.update(fields)
    return row


def subtask_row(subtask_id: str, task_id: str, *, version: int = 1, **fields: Any) -> Row:
    row: Row = {
        "id": subtask_id,
        "task_id": task_id,
        "title": f"Step {subtask_id}",
        "completed": False,
        "created_at": "2024-01-01T00:00:00+00:00",
        "updated_at": "2024-01-01T00:00:00+00:00",
        "completed_at": None,
        "position": 0,
        "version": version,
    }
    row.update(fields)
    return row


@dataclass(slots=True)
class Notice:
    level: NoticeLevel
    title: str
    message: str


@dataclass(slots=True)
class FakeNotifier:
    """Captures user notices for assertions."""

    notices: list[Notice] = field(default_factory=list)

    def notify(self, level: NoticeLevel, title: str, message: str) -> None:
        self.notices.append(Notice(level=level, title=title, message=message))

    def titles(self) -> list[str]:
        return [n.title for n in self.notices]


class RecordingSleep:
    """Async sleep replacement: records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FlakyOperation:
    """
    Async operation that raises the given errors in order, then returns `value`.

    `errors` may be longer than the number of calls; `calls` counts invocations.
    """

    def __init__(self, errors: list[BaseException], value: Any = "ok") -> None:
        self._errors = list(errors)
        self.value = value
        self.calls = 0
        self.raised: list[BaseException] = []

    async def __call__(self) -> Any:
        self.calls += 1
        if self._errors:
            err = self._errors.pop(0)
            self.raised.append(err)
            raise err
        return self.value


class AlwaysFailing:
    """Async operation that raises a fresh error from `factory` on every call."""

    def __init__(self, factory: Callable[[int], BaseException]) -> None:
        self._factory = factory
        self.calls = 0
        self.raised: list[BaseException] = []

    async def __call__(self) -> Any:
        self.calls += 1
        err = self._factory(self.calls)
        self.raised.append(err)
        raise err


class ScriptedRemoteStore(InMemoryRemoteStore):
    """
    InMemoryRemoteStore with scripted failures and interleaved writers.

    - fail_next(op, *errors): the next calls of `op` raise these errors
    - before_next(op, fn): run `fn` right before the next `op` is evaluated
    - lose_reply_next(op): the next `op` is applied, then the reply is lost
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._failures: dict[str, list[BaseException]] = {}
        self._hooks: dict[str, list[Callable[[], None]]] = {}
        self._lost_replies: dict[str, int] = {}

    def fail_next(self, op: str, *errors: BaseException) -> None:
        self._failures.setdefault(op, []).extend(errors)

    def before_next(self, op: str, fn: Callable[[], None]) -> None:
        self._hooks.setdefault(op, []).append(fn)

    def lose_reply_next(self, op: str) -> None:
        self._lost_replies[op] = self._lost_replies.get(op, 0) + 1

    def external_write(self, record_id: str, table: str = TASKS_TABLE, **fields: Any) -> None:
        """Another client's accepted write: fields change and the version moves on."""
        row = self._tables[table][record_id]
        row.update(fields)
        row["version"] = int(row["version"]) + 1

    def count(self, op: str) -> int:
        return sum(1 for o, _ in self.calls if o == op)

    def _check_lost(self, op: str) -> None:
        if self._lost_replies.get(op):
            self._lost_replies[op] -= 1
            raise ConnectionError("network: connection reset before the reply arrived")

    async def _enter(self, op: str, table: str) -> None:
        await super()._enter(op, table)
        hooks = self._hooks.get(op)
        if hooks:
            hooks.pop(0)()
        failures = self._failures.get(op)
        if failures:
            raise failures.pop(0)

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        out = await super().insert(table, row)
        self._check_lost("insert")
        return out

    async def update(self, table: str, values: Mapping[str, Any], *, match: Mapping[str, Any]) -> list[Row]:
        out = await super().update(table, values, match=match)
        self._check_lost("update")
        return out


class ExplodingRemoteStore:
    """RemoteStore that fails the test on any call."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def _boom(self, op: str) -> None:
        self.calls.append(op)
        raise AssertionError(f"remote store must not be called ({op})")

    async def select(self, table: str, *, match=None, order=None) -> list[Row]:
        self._boom("select")
        return []

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        self._boom("insert")
        return {}

    async def update(self, table: str, values: Mapping[str, Any], *, match: Mapping[str, Any]) -> list[Row]:
        self._boom("update")
        return []

    async def delete(self, table: str, *, match: Mapping[str, Any]) -> int:
        self._boom("delete")
        return 0
