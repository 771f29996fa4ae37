# src/focus_sync/tasks/repository.py

"""
TaskRepository: the task-level facade over the sync machinery.

Signed in:
- every remote call goes through the ResilientOperationRunner,
- writes are conditional on the record version (VersionedRecordStore),
- the local cache changes only on success or on a reload from the remote.

Signed out:
- everything goes to the local SQLite store; the remote is never touched.

Operations never raise for expected failures; they return an OperationResult
and push a user notice through the Notifier.
"""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from ..core.errors import (
    ConflictError,
    NotFoundError,
    RemoteStoreError,
    SyncError,
    ValidationError,
    friendly_error_message,
)
from ..core.identity import Identity
from ..core.notifier import LoggingNotifier
from ..core.ports import IdentityProvider, LocalTaskRepo, NoticeLevel, Notifier, RemoteStore
from ..sync.optimistic import PendingChange, apply_local, commit, rollback
from ..sync.retry import ResilientOperationRunner, run_batch
from ..sync.versioned import UpdateResult, VersionedRecordStore
from .task_models import (
    SUBTASKS_TABLE,
    TASKS_TABLE,
    Priority,
    SubTask,
    Task,
    apply_fields,
    fields_to_row,
    normalize_fields,
    normalize_subtask_fields,
    subtask_from_row,
    subtask_to_row,
    task_from_row,
    task_to_row,
)

logger = logging.getLogger(__name__)

COUNTER_FIELDS = frozenset({"pomodoro_count"})
REMOTE_ORDER = "position.asc,created_at.asc"
SUBTASK_ORDER = "position.asc,created_at.asc"


class Outcome(StrEnum):
    OK = "ok"
    CONFLICT = "conflict"
    FAILED = "failed"


@dataclass(slots=True)
class OperationResult:
    outcome: Outcome
    task: Task | None = None
    message: str = ""
    subtask: SubTask | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK


@dataclass(slots=True)
class ReorderResult:
    """Best-effort batch: some ids may have moved while others did not."""

    updated: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failed


class TaskRepository:
    def __init__(
        self,
        *,
        remote: RemoteStore,
        identity: IdentityProvider,
        local: LocalTaskRepo,
        runner: ResilientOperationRunner | None = None,
        notifier: Notifier | None = None,
        conflict_max_attempts: int = 3,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._remote = remote
        self._identity = identity
        self._local = local
        self._runner = runner or ResilientOperationRunner()
        self._notifier = notifier or LoggingNotifier()
        self._conflict_max_attempts = max(1, int(conflict_max_attempts))
        self._clock = clock
        self._new_id = id_factory

        # Last-known remote state, owned by this repository only.
        self._cache: dict[str, Task] = {}
        self._cache_owner: str | None = None
        # task id -> {subtask id: SubTask}, filled per task on first read.
        self._subtasks: dict[str, dict[str, SubTask]] = {}
        # Pomodoro focus target; session-only.
        self._active_id: str | None = None

    # ---- helpers ----

    def _store(self, ident: Identity) -> VersionedRecordStore:
        return VersionedRecordStore(self._remote, TASKS_TABLE, scope={"user_id": ident.user_id}, clock=self._clock)

    async def _ensure_cache(self, ident: Identity) -> None:
        if self._cache_owner != ident.user_id:
            logger.info("Identity changed (%s -> %s), reloading tasks", self._cache_owner, ident.user_id)
            await self.reload()

    def _fail(self, action: str, task_id: str | None, exc: BaseException, title: str) -> OperationResult:
        message = friendly_error_message(exc)
        logger.error(
            "%s failed id=%s attempts=%s error=%s: %s",
            action,
            task_id,
            getattr(exc, "attempts", None),
            exc.__class__.__name__,
            exc,
        )
        self._notifier.notify(NoticeLevel.ERROR, title, message)
        return OperationResult(Outcome.FAILED, message=message, error=exc)

    async def _conflict(self, action: str, task_id: str, exc: ConflictError) -> OperationResult:
        logger.warning("%s conflict id=%s expected_version=%s", action, task_id, exc.expected_version)
        try:
            await self.reload()
        except Exception:
            logger.exception("Reload after conflict failed id=%s", task_id)
        message = friendly_error_message(exc)
        self._notifier.notify(NoticeLevel.WARNING, "Conflict detected", message)
        return OperationResult(Outcome.CONFLICT, task=self._cache.get(task_id), message=message, error=exc)

    async def _known(self, store: VersionedRecordStore, task_id: str) -> Task:
        """Cached copy of a task, fetched once if this client never saw it."""
        task = self._cache.get(task_id)
        if task is not None:
            return task
        row = await self._runner.run(lambda: store.fetch(task_id), action="fetch")
        task = task_from_row(row)
        self._cache[task_id] = task
        return task

    @staticmethod
    def _confirmed(change: PendingChange[Task], result: UpdateResult) -> Task:
        try:
            return task_from_row(result.row)
        except ValidationError:
            # Partial representation (e.g. only the version column came back).
            return replace(change.optimistic, version=result.new_version)

    def _drop_subtree(self, task_id: str) -> None:
        doomed = {task_id}
        grew = True
        while grew:
            grew = False
            for t in self._cache.values():
                if t.parent_id in doomed and t.id not in doomed:
                    doomed.add(t.id)
                    grew = True
        for tid in doomed:
            self._cache.pop(tid, None)
            self._subtasks.pop(tid, None)

    async def _insert_or_fetch(self, store: VersionedRecordStore, row: Mapping[str, Any], action: str) -> dict[str, Any]:
        attempts = 0

        async def insert_once() -> dict[str, Any]:
            nonlocal attempts
            attempts += 1
            try:
                return await store.insert(row)
            except RemoteStoreError as e:
                # A retried insert whose first try landed: the client-side id is already there.
                if attempts > 1 and e.code == "23505":
                    return await store.fetch(str(row["id"]))
                raise

        return await self._runner.run(insert_once, action=action)

    def _local_result(self, task: Task | None, task_id: str, action: str) -> OperationResult:
        if task is None:
            return self._fail(action, task_id, NotFoundError(f"task {task_id} not found", record_id=task_id), "Task not found")
        return OperationResult(Outcome.OK, task=task)

    # ---- reads ----

    async def reload(self) -> list[Task]:
        """Replace the cache with the remote state (or clear it when signed out)."""
        ident = self._identity.current()
        if ident is None:
            self._cache.clear()
            self._subtasks.clear()
            self._cache_owner = None
            return []

        store = self._store(ident)
        rows = await self._runner.run(lambda: store.select_all(order=REMOTE_ORDER), action="reload")

        fresh: dict[str, Task] = {}
        for row in rows:
            try:
                task = task_from_row(row)
            except ValidationError as e:
                logger.warning("Skipping invalid task row id=%s: %s", row.get("id"), e)
                continue
            fresh[task.id] = task

        self._cache = fresh
        self._subtasks = {}
        self._cache_owner = ident.user_id
        logger.debug("Reloaded %d tasks for user_id=%s", len(fresh), ident.user_id)
        return self._sorted(fresh.values())

    async def refresh(self) -> OperationResult:
        """User-triggered reload; failures become a notice instead of an exception."""
        try:
            await self.reload()
        except Exception as e:
            return self._fail("refresh", None, e, "Failed to Load Tasks")
        return OperationResult(Outcome.OK)

    @staticmethod
    def _sorted(tasks: Iterable[Task]) -> list[Task]:
        return sorted(tasks, key=lambda t: (t.position, t.created_at))

    async def list_tasks(self) -> list[Task]:
        ident = self._identity.current()
        if ident is None:
            return list(self._local.list_tasks())
        await self._ensure_cache(ident)
        return self._sorted(self._cache.values())

    async def get(self, task_id: str) -> Task | None:
        for t in await self.list_tasks():
            if t.id == task_id:
                return t
        return None

    async def active_tasks(self) -> list[Task]:
        return [t for t in await self.list_tasks() if not t.completed]

    async def completed_tasks(self) -> list[Task]:
        return [t for t in await self.list_tasks() if t.completed]

    async def children_of(self, parent_id: str) -> list[Task]:
        return [t for t in await self.list_tasks() if t.parent_id == parent_id]

    # Query helpers below only look at open tasks.

    async def tasks_by_priority(self, priority: Priority | str) -> list[Task]:
        wanted = Priority.parse(priority)
        return [t for t in await self.active_tasks() if t.priority is wanted]

    async def tasks_by_tag(self, tag: str) -> list[Task]:
        return [t for t in await self.active_tasks() if tag in t.tags]

    async def overdue_tasks(self, now: float | None = None) -> list[Task]:
        now = self._clock() if now is None else now
        return [t for t in await self.active_tasks() if t.due_date is not None and t.due_date < now]

    async def tasks_due_today(self, now: float | None = None) -> list[Task]:
        """Open tasks due between local midnight and the next one."""
        now = self._clock() if now is None else now
        start = datetime.fromtimestamp(now).astimezone().replace(hour=0, minute=0, second=0, microsecond=0)
        lo, hi = start.timestamp(), (start + timedelta(days=1)).timestamp()
        return [t for t in await self.active_tasks() if t.due_date is not None and lo <= t.due_date < hi]

    # ---- active (focus) task ----

    async def set_active_task(self, task_id: str | None) -> bool:
        """Select the task the pomodoro timer works on; None clears it. Completed tasks are refused."""
        if task_id is None:
            self._active_id = None
            return True
        task = await self.get(task_id)
        if task is None or task.completed:
            return False
        self._active_id = task_id
        return True

    async def get_active_task(self) -> Task | None:
        if self._active_id is None:
            return None
        return await self.get(self._active_id)

    async def _forget_active_if_gone(self) -> None:
        if self._active_id is not None and await self.get(self._active_id) is None:
            logger.debug("Active task %s is gone, clearing selection", self._active_id)
            self._active_id = None

    # ---- create ----

    async def create(self, title: str, **fields: Any) -> OperationResult:
        try:
            values = normalize_fields({"title": title, **fields}, now=self._clock())
        except ValidationError as e:
            return self._fail("create", None, e, "Failed to Add Task")

        ident = self._identity.current()
        if ident is None:
            try:
                task = Task(id=self._new_id(), created_at=self._clock(), **{"position": self._local.next_position(), **values})
                self._local.insert_task(task)
            except (sqlite3.Error, ValueError) as e:
                return self._fail("create", None, e, "Failed to Add Task")
            return OperationResult(Outcome.OK, task=task)

        store = self._store(ident)
        try:
            await self._ensure_cache(ident)
            position = max((t.position for t in self._cache.values()), default=-1) + 1
            task = Task(id=self._new_id(), created_at=self._clock(), version=1, **{"position": position, **values})
            created = task_from_row(await self._insert_or_fetch(store, task_to_row(task, ident.user_id), "create"))
        except Exception as e:
            return self._fail("create", None, e, "Failed to Add Task")

        self._cache[created.id] = created
        logger.info("Task created id=%s version=%s", created.id, created.version)
        return OperationResult(Outcome.OK, task=created)

    # ---- update (bounded conflict retry) ----

    async def update(self, task_id: str, fields: Mapping[str, Any]) -> OperationResult:
        try:
            values = normalize_fields(fields, now=self._clock())
        except ValidationError as e:
            return self._fail("update", task_id, e, "Failed to Update Task")

        ident = self._identity.current()
        if ident is None:
            try:
                return self._local_result(self._local.update_task_fields(task_id, values), task_id, "update")
            except (sqlite3.Error, ValueError) as e:
                return self._fail("update", task_id, e, "Failed to Update Task")

        store = self._store(ident)
        wire = fields_to_row(values)
        compared = [k for k in values if k != "completed_at"]
        previous: Task | None = None
        last_conflict: ConflictError | None = None

        try:
            await self._ensure_cache(ident)
            for attempt in range(1, self._conflict_max_attempts + 1):
                current = task_from_row(await self._runner.run(lambda: store.fetch(task_id), action="update.fetch"))

                if previous is not None:
                    if all(getattr(current, k) == values[k] for k in compared):
                        # Our write landed on an earlier try; only its reply was lost.
                        self._cache[task_id] = current
                        return OperationResult(Outcome.OK, task=current)
                    touched = [k for k in compared if getattr(previous, k) != getattr(current, k)]
                    if touched:
                        # Someone else edited the same fields: do not overwrite their values.
                        logger.warning(
                            "update id=%s fails closed: concurrent change to %s",
                            task_id,
                            ", ".join(touched),
                        )
                        return await self._conflict("update", task_id, last_conflict or ConflictError(task_id, current.version or 0))

                self._cache[task_id] = current
                change = apply_local(self._cache, task_id, lambda t: apply_fields(t, values))
                expected = int(current.version or 0)
                try:
                    result = await self._runner.run(
                        lambda: store.conditional_update(task_id, expected, wire),
                        action="update",
                    )
                except ConflictError as e:
                    rollback(self._cache, change)
                    e.attempts = attempt
                    last_conflict = e
                    previous = current
                    logger.warning(
                        "update conflict id=%s expected_version=%s attempt=%d/%d",
                        task_id,
                        expected,
                        attempt,
                        self._conflict_max_attempts,
                    )
                    continue
                except Exception:
                    rollback(self._cache, change)
                    raise

                confirmed = self._confirmed(change, result)
                commit(self._cache, change, confirmed)
                return OperationResult(Outcome.OK, task=confirmed)
        except Exception as e:
            return self._fail("update", task_id, e, "Failed to Update Task")

        # Contention did not settle within the bounded attempts.
        try:
            await self.reload()
        except Exception:
            logger.exception("Reload after exhausted update failed id=%s", task_id)
        message = "This task keeps changing elsewhere. Please refresh and try again."
        logger.error("update gave up id=%s after %d conflict attempts", task_id, self._conflict_max_attempts)
        self._notifier.notify(NoticeLevel.ERROR, "Failed to Update Task", message)
        return OperationResult(Outcome.FAILED, task=self._cache.get(task_id), message=message, error=last_conflict)

    # ---- read-modify-write (no automatic conflict retry) ----

    async def _read_modify_write(
        self,
        action: str,
        task_id: str,
        compute: Callable[[Task], Mapping[str, Any]],
        title: str,
    ) -> OperationResult:
        ident = self._identity.current()
        if ident is None:
            try:
                task = self._local.get_task(task_id)
                if task is None:
                    return self._local_result(None, task_id, action)
                values = normalize_fields(compute(task), now=self._clock())
                return self._local_result(self._local.update_task_fields(task_id, values), task_id, action)
            except (sqlite3.Error, ValueError, SyncError) as e:
                return self._fail(action, task_id, e, title)

        store = self._store(ident)
        try:
            await self._ensure_cache(ident)
            known = await self._known(store, task_id)
            values = normalize_fields(compute(known), now=self._clock())
        except Exception as e:
            return self._fail(action, task_id, e, title)

        change = apply_local(self._cache, task_id, lambda t: apply_fields(t, values))
        expected = int(known.version or 0)
        try:
            result = await self._runner.run(
                lambda: store.conditional_update(task_id, expected, fields_to_row(values)),
                action=action,
            )
        except ConflictError as e:
            rollback(self._cache, change)
            return await self._conflict(action, task_id, e)
        except Exception as e:
            rollback(self._cache, change)
            return self._fail(action, task_id, e, title)

        confirmed = self._confirmed(change, result)
        commit(self._cache, change, confirmed)
        return OperationResult(Outcome.OK, task=confirmed)

    async def toggle_completion(self, task_id: str) -> OperationResult:
        return await self._read_modify_write(
            "toggle",
            task_id,
            lambda t: {"completed": not t.completed},
            "Failed to Update Task",
        )

    async def increment_counter(self, task_id: str, counter: str = "pomodoro_count", amount: int = 1) -> OperationResult:
        if counter not in COUNTER_FIELDS:
            return self._fail("increment", task_id, ValidationError(f"not a counter field: {counter}"), "Failed to Update Task")
        return await self._read_modify_write(
            "increment",
            task_id,
            lambda t: {counter: getattr(t, counter) + amount},
            "Failed to Update Pomodoro",
        )

    # ---- delete ----

    async def delete(self, task_id: str) -> OperationResult:
        ident = self._identity.current()
        if ident is None:
            try:
                if not self._local.delete_task(task_id):
                    return self._local_result(None, task_id, "delete")
            except sqlite3.Error as e:
                return self._fail("delete", task_id, e, "Failed to Delete Task")
            await self._forget_active_if_gone()
            return OperationResult(Outcome.OK)

        store = self._store(ident)
        try:
            await self._ensure_cache(ident)
            removed = await self._runner.run(lambda: store.delete(task_id), action="delete")
        except Exception as e:
            # Cache stays as it was: the task may well still exist remotely.
            return self._fail("delete", task_id, e, "Failed to Delete Task")

        if removed == 0:
            logger.info("delete id=%s: already gone remotely", task_id)
        self._drop_subtree(task_id)
        await self._forget_active_if_gone()
        return OperationResult(Outcome.OK)

    # ---- reorder (best-effort fan-out) ----

    async def reorder(self, ordered_ids: list[str]) -> ReorderResult:
        result = ReorderResult()
        if len(set(ordered_ids)) != len(ordered_ids):
            e = ValidationError("duplicate ids in reorder request")
            self._fail("reorder", None, e, "Failed to Reorder Tasks")
            result.failed = {tid: friendly_error_message(e) for tid in ordered_ids}
            return result

        ident = self._identity.current()
        if ident is None:
            for pos, tid in enumerate(ordered_ids):
                try:
                    moved = self._local.update_task_fields(tid, {"position": pos})
                except sqlite3.Error as e:
                    result.failed[tid] = friendly_error_message(e)
                    continue
                if moved is None:
                    result.failed[tid] = "Item not found."
                else:
                    result.updated.append(tid)
            return result

        store = self._store(ident)
        try:
            await self._ensure_cache(ident)
        except Exception as e:
            self._fail("reorder", None, e, "Failed to Reorder Tasks")
            result.failed = {tid: friendly_error_message(e) for tid in ordered_ids}
            return result

        changes: list[PendingChange[Task]] = []
        ops = []
        for pos, tid in enumerate(ordered_ids):
            known = self._cache.get(tid)
            if known is None:
                result.failed[tid] = "Item not found."
                continue
            changes.append(apply_local(self._cache, tid, lambda t, p=pos: replace(t, position=p)))
            ops.append(
                lambda tid=tid, v=int(known.version or 0), p=pos: store.conditional_update(tid, v, {"position": p})
            )

        outcomes = await run_batch(self._runner, ops, action="reorder")

        any_conflict = False
        for change, out in zip(changes, outcomes):
            if out.ok and out.value is not None:
                commit(self._cache, change, self._confirmed(change, out.value))
                result.updated.append(change.record_id)
            else:
                rollback(self._cache, change)
                any_conflict = any_conflict or isinstance(out.error, ConflictError)
                result.failed[change.record_id] = friendly_error_message(out.error or RuntimeError("unknown error"))

        if result.failed:
            logger.warning(
                "reorder partial: updated=%d failed=%d (%s)",
                len(result.updated),
                len(result.failed),
                ", ".join(result.failed),
            )
            if any_conflict:
                try:
                    await self.reload()
                except Exception:
                    logger.exception("Reload after reorder conflict failed")
            self._notifier.notify(
                NoticeLevel.WARNING,
                "Reorder incomplete",
                f"{len(result.failed)} of {len(ordered_ids)} tasks could not be moved. Please refresh.",
            )
        return result

    # ---- subtasks (checklist items inside a task) ----

    def _subtask_store(self, task_id: str) -> VersionedRecordStore:
        return VersionedRecordStore(self._remote, SUBTASKS_TABLE, scope={"task_id": task_id}, clock=self._clock)

    async def _load_subtasks(self, task_id: str) -> dict[str, SubTask]:
        store = self._subtask_store(task_id)
        rows = await self._runner.run(lambda: store.select_all(order=SUBTASK_ORDER), action="subtasks.load")

        fresh: dict[str, SubTask] = {}
        for row in rows:
            try:
                sub = subtask_from_row(row)
            except ValidationError as e:
                logger.warning("Skipping invalid subtask row id=%s: %s", row.get("id"), e)
                continue
            fresh[sub.id] = sub

        self._subtasks[task_id] = fresh
        return fresh

    async def _subtask_cache(self, ident: Identity, task_id: str) -> dict[str, SubTask]:
        await self._ensure_cache(ident)
        # Raises NotFoundError unless the parent task belongs to this user.
        await self._known(self._store(ident), task_id)
        cached = self._subtasks.get(task_id)
        if cached is None:
            cached = await self._load_subtasks(task_id)
        return cached

    def _subtask_missing(self, action: str, subtask_id: str) -> OperationResult:
        err = NotFoundError(f"subtask {subtask_id} not found", record_id=subtask_id)
        return self._fail(action, subtask_id, err, "Subtask not found")

    async def _subtask_conflict(self, task_id: str, subtask_id: str, exc: ConflictError) -> OperationResult:
        logger.warning("subtask conflict id=%s expected_version=%s", subtask_id, exc.expected_version)
        fresh = self._subtasks.get(task_id, {})
        try:
            fresh = await self._load_subtasks(task_id)
        except Exception:
            logger.exception("Reload of subtasks after conflict failed task_id=%s", task_id)
        message = friendly_error_message(exc)
        self._notifier.notify(NoticeLevel.WARNING, "Conflict detected", message)
        return OperationResult(Outcome.CONFLICT, subtask=fresh.get(subtask_id), message=message, error=exc)

    async def subtasks_of(self, task_id: str) -> list[SubTask]:
        ident = self._identity.current()
        if ident is None:
            return list(self._local.list_subtasks(task_id))
        cached = await self._subtask_cache(ident, task_id)
        return sorted(cached.values(), key=lambda s: (s.position, s.created_at))

    async def add_subtask(self, task_id: str, title: str) -> OperationResult:
        try:
            values = normalize_subtask_fields({"title": title})
        except ValidationError as e:
            return self._fail("add_subtask", task_id, e, "Failed to Add Subtask")

        ident = self._identity.current()
        if ident is None:
            try:
                if self._local.get_task(task_id) is None:
                    return self._local_result(None, task_id, "add_subtask")
                sub = SubTask(
                    id=self._new_id(),
                    task_id=task_id,
                    title=values["title"],
                    created_at=self._clock(),
                    position=len(self._local.list_subtasks(task_id)),
                )
                self._local.insert_subtask(sub)
            except (sqlite3.Error, ValueError) as e:
                return self._fail("add_subtask", task_id, e, "Failed to Add Subtask")
            return OperationResult(Outcome.OK, subtask=sub)

        try:
            cache = await self._subtask_cache(ident, task_id)
            sub = SubTask(
                id=self._new_id(),
                task_id=task_id,
                title=values["title"],
                created_at=self._clock(),
                position=max((s.position for s in cache.values()), default=-1) + 1,
                version=1,
            )
            row = await self._insert_or_fetch(self._subtask_store(task_id), subtask_to_row(sub), "add_subtask")
            created = subtask_from_row(row)
        except Exception as e:
            return self._fail("add_subtask", task_id, e, "Failed to Add Subtask")

        self._subtasks.setdefault(task_id, {})[created.id] = created
        logger.info("Subtask created id=%s task_id=%s", created.id, task_id)
        return OperationResult(Outcome.OK, subtask=created)

    async def toggle_subtask(self, task_id: str, subtask_id: str) -> OperationResult:
        """Same read-modify-write cycle as toggle_completion, on one checklist item."""
        title = "Failed to Update Subtask"
        ident = self._identity.current()
        if ident is None:
            try:
                sub = self._local.get_subtask(subtask_id)
                if sub is None or sub.task_id != task_id:
                    return self._subtask_missing("toggle_subtask", subtask_id)
                values = normalize_subtask_fields({"completed": not sub.completed}, now=self._clock())
                updated = self._local.update_subtask_fields(subtask_id, values)
            except (sqlite3.Error, ValueError) as e:
                return self._fail("toggle_subtask", subtask_id, e, title)
            if updated is None:
                return self._subtask_missing("toggle_subtask", subtask_id)
            return OperationResult(Outcome.OK, subtask=updated)

        try:
            cache = await self._subtask_cache(ident, task_id)
            known = cache.get(subtask_id)
            if known is None:
                return self._subtask_missing("toggle_subtask", subtask_id)
            values = normalize_subtask_fields({"completed": not known.completed}, now=self._clock())
        except Exception as e:
            return self._fail("toggle_subtask", subtask_id, e, title)

        store = self._subtask_store(task_id)
        change = apply_local(cache, subtask_id, lambda s: replace(s, **values))
        expected = int(known.version or 0)
        try:
            result = await self._runner.run(
                lambda: store.conditional_update(subtask_id, expected, fields_to_row(values)),
                action="toggle_subtask",
            )
        except ConflictError as e:
            rollback(cache, change)
            return await self._subtask_conflict(task_id, subtask_id, e)
        except Exception as e:
            rollback(cache, change)
            return self._fail("toggle_subtask", subtask_id, e, title)

        try:
            confirmed = subtask_from_row(result.row)
        except ValidationError:
            confirmed = replace(change.optimistic, version=result.new_version)
        commit(cache, change, confirmed)
        return OperationResult(Outcome.OK, subtask=confirmed)

    async def delete_subtask(self, task_id: str, subtask_id: str) -> OperationResult:
        ident = self._identity.current()
        if ident is None:
            try:
                if not self._local.delete_subtask(task_id, subtask_id):
                    return self._subtask_missing("delete_subtask", subtask_id)
            except sqlite3.Error as e:
                return self._fail("delete_subtask", subtask_id, e, "Failed to Delete Subtask")
            return OperationResult(Outcome.OK)

        store = self._subtask_store(task_id)
        try:
            cache = await self._subtask_cache(ident, task_id)
            removed = await self._runner.run(lambda: store.delete(subtask_id), action="delete_subtask")
        except Exception as e:
            return self._fail("delete_subtask", subtask_id, e, "Failed to Delete Subtask")

        if removed == 0:
            logger.info("delete_subtask id=%s: already gone remotely", subtask_id)
        cache.pop(subtask_id, None)
        return OperationResult(Outcome.OK)
