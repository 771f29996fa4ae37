# tests/test_memory_store.py

from __future__ import annotations

import pytest

from focus_sync.remote.memory import InMemoryRemoteStore
from focus_sync.tasks.task_models import SUBTASKS_TABLE, TASKS_TABLE

from .fakes import subtask_row, task_row


@pytest.mark.asyncio
async def test_delete_cascades_to_child_tasks_and_subtasks() -> None:
    store = InMemoryRemoteStore()
    store.seed(
        TASKS_TABLE,
        [task_row("root"), task_row("child", parent_id="root"), task_row("grandchild", parent_id="child"), task_row("x")],
    )
    store.seed(SUBTASKS_TABLE, [subtask_row("s1", "root"), subtask_row("s2", "grandchild"), subtask_row("s3", "x")])

    removed = await store.delete(TASKS_TABLE, match={"id": "root"})

    assert removed == 1
    assert [r["id"] for r in store.rows(TASKS_TABLE)] == ["x"]
    assert [r["id"] for r in store.rows(SUBTASKS_TABLE)] == ["s3"]


@pytest.mark.asyncio
async def test_cascades_can_be_disabled() -> None:
    store = InMemoryRemoteStore(cascades={})
    store.seed(TASKS_TABLE, [task_row("root"), task_row("child", parent_id="root")])

    await store.delete(TASKS_TABLE, match={"id": "root"})

    assert [r["id"] for r in store.rows(TASKS_TABLE)] == ["child"]


@pytest.mark.asyncio
async def test_select_filters_and_orders() -> None:
    store = InMemoryRemoteStore()
    store.seed(SUBTASKS_TABLE, [subtask_row("b", "t", position=1), subtask_row("a", "t", position=0), subtask_row("z", "u")])

    rows = await store.select(SUBTASKS_TABLE, match={"task_id": "t"}, order="position.asc")

    assert [r["id"] for r in rows] == ["a", "b"]
