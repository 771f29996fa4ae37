# src/focus_sync/sync/versioned.py

"""
Optimistic locking against a remote tabular store.

Every write is conditioned on (id == record_id AND version == expected).
The store evaluates that predicate atomically; zero affected rows means
someone else advanced the version first and we raise ConflictError instead
of overwriting their change.

This class performs single remote calls. Callers wrap them in the
ResilientOperationRunner; ConflictError is classified as non-retryable there.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..core.errors import ConflictError, InvalidResponseError, NotFoundError, ValidationError
from ..core.ports import RemoteStore, Row

logger = logging.getLogger(__name__)

_RESERVED = frozenset({"id", "version", "updated_at"})


@dataclass(slots=True, frozen=True)
class UpdateResult:
    record_id: str
    new_version: int
    row: Row = field(default_factory=dict)


class VersionedRecordStore:
    """
    Versioned CRUD on one table.

    `scope` is added to every filter (e.g. {"user_id": ...}) so a client can
    only ever match its own rows.
    """

    def __init__(
        self,
        remote: RemoteStore,
        table: str,
        *,
        scope: Mapping[str, Any] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._remote = remote
        self.table = table
        self._scope = dict(scope or {})
        self._clock = clock

    def _match(self, **extra: Any) -> dict[str, Any]:
        return {**self._scope, **extra}

    def _now_iso(self) -> str:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat()

    # ---- reads ----

    async def select_all(self, *, order: str | None = None) -> list[Row]:
        return await self._remote.select(self.table, match=self._match(), order=order)

    async def fetch(self, record_id: str) -> Row:
        rows = await self._remote.select(self.table, match=self._match(id=record_id))
        if not rows:
            raise NotFoundError(f"{self.table} record {record_id} not found", record_id=record_id)
        return rows[0]

    async def fetch_version(self, record_id: str) -> int:
        row = await self.fetch(record_id)
        return _row_version(row, record_id)

    # ---- writes ----

    async def insert(self, row: Mapping[str, Any]) -> Row:
        data = {**dict(row), **self._scope, "version": 1, "updated_at": self._now_iso()}
        if not data.get("id"):
            raise ValidationError("record id is required for insert")
        return await self._remote.insert(self.table, data)

    async def conditional_update(
        self,
        record_id: str,
        expected_version: int,
        field_updates: Mapping[str, Any],
    ) -> UpdateResult:
        """
        Apply `field_updates` only if the stored version still equals
        `expected_version`. Success bumps the version by exactly one.
        """
        if expected_version is None or int(expected_version) < 1:
            raise ValidationError(f"invalid expected version {expected_version!r}", record_id=record_id)
        bad = _RESERVED.intersection(field_updates)
        if bad:
            raise ValidationError(f"cannot set reserved fields: {sorted(bad)}", record_id=record_id)

        expected = int(expected_version)
        values = {**dict(field_updates), "version": expected + 1, "updated_at": self._now_iso()}

        rows = await self._remote.update(
            self.table,
            values,
            match=self._match(id=record_id, version=expected),
        )
        if not rows:
            logger.info(
                "Version conflict table=%s id=%s expected_version=%s",
                self.table,
                record_id,
                expected,
            )
            raise ConflictError(record_id, expected)
        if len(rows) > 1:
            raise InvalidResponseError(
                f"conditional update matched {len(rows)} rows for id={record_id}",
                record_id=record_id,
                version=expected,
            )

        row = rows[0]
        new_version = _row_version(row, record_id) if "version" in row else expected + 1
        if new_version != expected + 1:
            raise InvalidResponseError(
                f"store returned version {new_version} for id={record_id}, expected {expected + 1}",
                record_id=record_id,
                version=expected,
            )

        logger.debug("Updated table=%s id=%s version %s -> %s", self.table, record_id, expected, new_version)
        return UpdateResult(record_id=record_id, new_version=new_version, row=row)

    async def delete(self, record_id: str) -> int:
        """Unconditional delete (no version check). Returns affected rows."""
        return await self._remote.delete(self.table, match=self._match(id=record_id))


def _row_version(row: Mapping[str, Any], record_id: str) -> int:
    raw = row.get("version")
    try:
        version = int(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise InvalidResponseError(f"record {record_id} has no valid version: {raw!r}", record_id=record_id) from None
    if version < 1:
        raise InvalidResponseError(f"record {record_id} has non-positive version {version}", record_id=record_id)
    return version
