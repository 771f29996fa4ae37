# src/focus_sync/sync/optimistic.py

"""
Three-phase optimistic update over a local cache.

1. apply_local(): compute the optimistic value and show it in the cache
2. (caller) run the remote operation through the retry runner
3. commit() on success, rollback() on any failure

Phases are plain functions over a dict so each one can be tested alone.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass, replace
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass(slots=True, frozen=True)
class PendingChange(Generic[R]):
    record_id: str
    snapshot: R
    optimistic: R


def apply_local(
    cache: MutableMapping[str, R],
    record_id: str,
    compute: Callable[[R], R],
) -> PendingChange[R]:
    """Phase 1: place the optimistic value in the cache, keeping the snapshot."""
    snapshot = cache[record_id]
    optimistic = compute(snapshot)
    cache[record_id] = optimistic
    return PendingChange(record_id=record_id, snapshot=snapshot, optimistic=optimistic)


def commit(cache: MutableMapping[str, R], change: PendingChange[R], confirmed: R) -> bool:
    """
    Phase 3 (success): replace the optimistic value with the confirmed one.

    Skipped when the cache no longer holds our optimistic value (a reload or
    another change replaced it meanwhile); returns whether it was applied.
    """
    if cache.get(change.record_id) is not change.optimistic:
        logger.debug("commit skipped id=%s (cache entry replaced meanwhile)", change.record_id)
        return False
    cache[change.record_id] = confirmed
    return True


def commit_version(cache: MutableMapping[str, Any], change: PendingChange[Any], new_version: int) -> bool:
    """commit() for dataclass records: the optimistic value stamped with `new_version`."""
    return commit(cache, change, replace(change.optimistic, version=new_version))


def rollback(cache: MutableMapping[str, R], change: PendingChange[R]) -> bool:
    """
    Phase 3 (failure): restore the snapshot.

    Only if the cache still holds our optimistic value; a fresher entry
    (e.g. from a reload) is never clobbered with stale data.
    """
    if cache.get(change.record_id) is not change.optimistic:
        return False
    cache[change.record_id] = change.snapshot
    return True
