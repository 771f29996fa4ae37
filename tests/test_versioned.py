# tests/test_versioned.py

from __future__ import annotations

import asyncio

import pytest

from focus_sync.core.errors import ConflictError, InvalidResponseError, NotFoundError, ValidationError
from focus_sync.remote.memory import InMemoryRemoteStore
from focus_sync.sync.versioned import VersionedRecordStore
from focus_sync.tasks.task_models import TASKS_TABLE

from .fakes import USER_ID, task_row


def _store(remote, user_id: str = USER_ID) -> VersionedRecordStore:
    return VersionedRecordStore(remote, TASKS_TABLE, scope={"user_id": user_id}, clock=lambda: 1_700_000_000.0)


@pytest.mark.asyncio
async def test_insert_starts_at_version_one_and_stamps_scope() -> None:
    remote = InMemoryRemoteStore()
    store = _store(remote)

    row = await store.insert({"id": "t1", "title": "write tests", "version": 7, "user_id": "someone-else"})

    assert row["version"] == 1
    assert row["user_id"] == USER_ID
    assert row["updated_at"].startswith("2023-11-14")


@pytest.mark.asyncio
async def test_insert_without_id_is_rejected() -> None:
    with pytest.raises(ValidationError):
        await _store(InMemoryRemoteStore()).insert({"title": "no id"})


@pytest.mark.asyncio
async def test_conditional_update_bumps_version_by_one() -> None:
    remote = InMemoryRemoteStore()
    remote.seed(TASKS_TABLE, [task_row("t1", version=4)])
    store = _store(remote)

    result = await store.conditional_update("t1", 4, {"title": "renamed"})

    assert result.new_version == 5
    assert result.row["title"] == "renamed"
    assert remote.get(TASKS_TABLE, "t1")["version"] == 5


@pytest.mark.asyncio
async def test_stale_version_raises_conflict_and_leaves_row_untouched() -> None:
    remote = InMemoryRemoteStore()
    remote.seed(TASKS_TABLE, [task_row("t1", version=3, title="theirs")])
    store = _store(remote)

    with pytest.raises(ConflictError) as exc_info:
        await store.conditional_update("t1", 2, {"title": "mine"})

    assert exc_info.value.record_id == "t1"
    assert exc_info.value.expected_version == 2
    row = remote.get(TASKS_TABLE, "t1")
    assert row["title"] == "theirs"
    assert row["version"] == 3


@pytest.mark.asyncio
async def test_other_users_rows_never_match() -> None:
    remote = InMemoryRemoteStore()
    remote.seed(TASKS_TABLE, [task_row("t1", user_id="user-2")])

    with pytest.raises(ConflictError):
        await _store(remote).conditional_update("t1", 1, {"title": "hijack"})
    with pytest.raises(NotFoundError):
        await _store(remote).fetch("t1")


@pytest.mark.asyncio
async def test_version_monotonic_across_successes_and_conflicts() -> None:
    remote = InMemoryRemoteStore()
    remote.seed(TASKS_TABLE, [task_row("t1", version=1)])
    store = _store(remote)

    successes = 0
    for i in range(10):
        current = await store.fetch_version("t1")
        if i % 3 == 0:
            # Stale write interleaved with the real ones.
            with pytest.raises(ConflictError):
                await store.conditional_update("t1", current - 1 if current > 1 else current + 5, {"notes": "stale"})
        await store.conditional_update("t1", current, {"pomodoro_count": i})
        successes += 1

    assert await store.fetch_version("t1") == 1 + successes


@pytest.mark.asyncio
async def test_concurrent_updates_with_same_version_have_one_winner() -> None:
    remote = InMemoryRemoteStore(latency=0.001)
    remote.seed(TASKS_TABLE, [task_row("t1", version=1)])
    store = _store(remote)

    results = await asyncio.gather(
        *(store.conditional_update("t1", 1, {"title": f"writer {i}"}) for i in range(5)),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, BaseException)]
    losers = [r for r in results if isinstance(r, BaseException)]
    assert len(winners) == 1
    assert all(isinstance(e, ConflictError) for e in losers)
    row = remote.get(TASKS_TABLE, "t1")
    assert row["version"] == 2
    assert row["title"] == winners[0].row["title"]


@pytest.mark.asyncio
async def test_reserved_fields_and_bad_versions_are_rejected() -> None:
    remote = InMemoryRemoteStore()
    remote.seed(TASKS_TABLE, [task_row("t1")])
    store = _store(remote)

    with pytest.raises(ValidationError):
        await store.conditional_update("t1", 1, {"version": 9})
    with pytest.raises(ValidationError):
        await store.conditional_update("t1", 0, {"title": "x"})
    assert remote.calls == []


class _BrokenStore(InMemoryRemoteStore):
    """Returns a version that does not match the write it just accepted."""

    async def update(self, table, values, *, match):
        rows = await super().update(table, values, match=match)
        for row in rows:
            row["version"] = 99
        return rows


@pytest.mark.asyncio
async def test_unexpected_version_in_reply_is_an_invalid_response() -> None:
    remote = _BrokenStore()
    remote.seed(TASKS_TABLE, [task_row("t1", version=1)])

    with pytest.raises(InvalidResponseError):
        await _store(remote).conditional_update("t1", 1, {"title": "x"})


@pytest.mark.asyncio
async def test_delete_reports_affected_rows() -> None:
    remote = InMemoryRemoteStore()
    remote.seed(TASKS_TABLE, [task_row("t1")])
    store = _store(remote)

    assert await store.delete("t1") == 1
    assert await store.delete("t1") == 0
