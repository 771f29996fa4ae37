# src/focus_sync/remote/memory.py

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..core.errors import RemoteStoreError
from ..core.ports import Row

logger = logging.getLogger(__name__)

# parent table -> (child table, foreign key column); same ON DELETE CASCADE rules as the hosted schema.
DEFAULT_CASCADES: dict[str, tuple[tuple[str, str], ...]] = {
    "tasks": (("tasks", "parent_id"), ("subtasks", "task_id")),
}


def _matches(row: Mapping[str, Any], match: Mapping[str, Any] | None) -> bool:
    if not match:
        return True
    return all(row.get(k) == v for k, v in match.items())


def _sort_rows(rows: list[Row], order: str | None) -> list[Row]:
    """Apply a PostgREST-style order string: "position.asc,created_at.desc"."""
    if not order:
        return rows
    for part in reversed([p.strip() for p in order.split(",") if p.strip()]):
        col, _, direction = part.partition(".")
        rows.sort(
            key=lambda r: (r.get(col) is None, r.get(col) if r.get(col) is not None else 0),
            reverse=direction.startswith("desc"),
        )
    return rows


class InMemoryRemoteStore:
    """
    In-process RemoteStore used for offline demos and tests.

    The check-and-set inside update() has no suspension point, so on a single
    event loop it is atomic, like the hosted store's conditional UPDATE.
    `latency` (seconds) is awaited before each call to let operations interleave.
    Deletes follow `cascades` the way foreign keys with ON DELETE CASCADE do.
    """

    def __init__(
        self,
        *,
        latency: float = 0.0,
        cascades: Mapping[str, Iterable[tuple[str, str]]] | None = None,
    ) -> None:
        self._tables: dict[str, dict[str, Row]] = {}
        self.latency = latency
        self._cascades = {k: tuple(v) for k, v in (DEFAULT_CASCADES if cascades is None else cascades).items()}
        self.calls: list[tuple[str, str]] = []

    # ---- test / demo helpers ----

    def seed(self, table: str, rows: Iterable[Mapping[str, Any]]) -> None:
        t = self._tables.setdefault(table, {})
        for row in rows:
            t[str(row["id"])] = dict(row)

    def rows(self, table: str) -> list[Row]:
        return [copy.deepcopy(r) for r in self._tables.get(table, {}).values()]

    def get(self, table: str, record_id: str) -> Row | None:
        row = self._tables.get(table, {}).get(record_id)
        return copy.deepcopy(row) if row is not None else None

    async def _enter(self, op: str, table: str) -> None:
        self.calls.append((op, table))
        if self.latency > 0:
            await asyncio.sleep(self.latency)

    # ---- RemoteStore ----

    async def select(
        self,
        table: str,
        *,
        match: Mapping[str, Any] | None = None,
        order: str | None = None,
    ) -> list[Row]:
        await self._enter("select", table)
        rows = [copy.deepcopy(r) for r in self._tables.get(table, {}).values() if _matches(r, match)]
        return _sort_rows(rows, order)

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        await self._enter("insert", table)
        t = self._tables.setdefault(table, {})
        key = str(row.get("id") or "")
        if not key:
            raise RemoteStoreError("null value in column \"id\" violates not-null constraint", code="23502", status=400)
        if key in t:
            raise RemoteStoreError(
                f"duplicate key value violates unique constraint \"{table}_pkey\"",
                code="23505",
                status=409,
            )
        t[key] = dict(row)
        return copy.deepcopy(t[key])

    async def update(
        self,
        table: str,
        values: Mapping[str, Any],
        *,
        match: Mapping[str, Any],
    ) -> list[Row]:
        await self._enter("update", table)
        # No await below this line: check-and-set is atomic on the event loop.
        out: list[Row] = []
        for row in self._tables.get(table, {}).values():
            if _matches(row, match):
                row.update(values)
                out.append(copy.deepcopy(row))
        return out

    async def delete(self, table: str, *, match: Mapping[str, Any]) -> int:
        await self._enter("delete", table)
        t = self._tables.get(table, {})
        doomed = [k for k, r in t.items() if _matches(r, match)]
        for k in doomed:
            del t[k]
        self._cascade(table, set(doomed))
        return len(doomed)

    def _cascade(self, table: str, parent_ids: set[str]) -> None:
        for child_table, column in self._cascades.get(table, ()):
            rows = self._tables.get(child_table, {})
            children = [k for k, r in rows.items() if r.get(column) in parent_ids]
            for k in children:
                del rows[k]
            if children:
                logger.debug("cascade delete %s -> %s: %d row(s)", table, child_table, len(children))
                self._cascade(child_table, set(children))
