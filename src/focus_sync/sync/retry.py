# src/focus_sync/sync/retry.py

"""
Retry with exponential backoff and jitter.

ResilientOperationRunner wraps any remote call (read or write):
- classifies failures into transient (retry) and permanent (propagate now),
- sleeps min(initial * factor^(n-1), max) +-25% between attempts,
- propagates the last error once attempts run out, tagged as "exhausted".

Each run() call owns its attempt counter; nothing is shared between
concurrent operations, so many can be in flight on one event loop.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from ..core.errors import ConflictError, RetryOutcome, SyncError

logger = logging.getLogger(__name__)

T = TypeVar("T")

NON_RETRYABLE_CODES = (
    "400",  # Bad Request
    "401",  # Unauthorized
    "403",  # Forbidden
    "404",  # Not Found
    "422",  # Unprocessable Entity
    "PGRST116",  # no rows (PostgREST)
)

_NON_RETRYABLE_MARKERS = ("validation", "invalid", "not found", "unauthorized")
_TRANSIENT_MARKERS = ("network", "timeout", "timed out", "econnrefused", "etimedout", "too many requests")

JITTER_RATIO = 0.25

RetryObserver = Callable[[int, BaseException, float], None]
RetryPredicate = Callable[[BaseException], bool]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryOptions:
    """Delays are in seconds."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    on_retry: RetryObserver | None = None
    should_retry: RetryPredicate | None = None
    timeout: float | None = None


def _error_code(exc: BaseException) -> str:
    for attr in ("code", "status", "status_code"):
        val = getattr(exc, attr, None)
        if val is not None and str(val).strip():
            return str(val)
    return ""


def is_non_retryable_error(exc: BaseException) -> bool:
    """
    Permanent failures: retrying the same call unchanged cannot help.

    Conflicts are always permanent here; the repository decides whether to
    re-fetch and try again with a new version.
    """
    if isinstance(exc, ConflictError):
        return True

    code = _error_code(exc)
    if code and any(code.startswith(c) for c in NON_RETRYABLE_CODES):
        return True

    # Status may be present next to a PostgREST code (e.g. code=23505, status=409).
    status = getattr(exc, "status", None)
    if isinstance(status, int) and 400 <= status < 500 and status not in (408, 429):
        return True

    message = str(exc).lower()
    return any(marker in message for marker in _NON_RETRYABLE_MARKERS)


def is_retryable_error(exc: BaseException) -> bool:
    """Positive transient classification (network, timeout, 5xx, 429)."""
    if is_non_retryable_error(exc):
        return False

    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    if type(exc).__module__.startswith("httpx") and exc.__class__.__name__.endswith(
        ("TimeoutException", "Timeout", "TransportError", "NetworkError", "ConnectError", "ReadError", "WriteError")
    ):
        return True

    status = getattr(exc, "status", None)
    if isinstance(status, int) and (status >= 500 or status in (408, 429)):
        return True

    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


def compute_backoff_delay(attempt: int, options: RetryOptions, rng: random.Random | None = None) -> float:
    """
    Delay before retry number `attempt` (1-based).

    Base value min(initial * factor^(attempt-1), max), scaled by a uniform
    factor in [1 - JITTER_RATIO, 1 + JITTER_RATIO], clamped into [0, max].
    """
    base = max(0.0, options.initial_delay)
    # Grow step by step and stop at the ceiling; factor ** attempt overflows for long runs.
    for _ in range(max(0, attempt - 1)):
        if base >= options.max_delay or base == 0.0:
            break
        base *= options.backoff_factor
    base = min(base, options.max_delay)
    factor = (rng or random).uniform(1.0 - JITTER_RATIO, 1.0 + JITTER_RATIO)
    return max(0.0, min(base * factor, options.max_delay))


def _tag_failure(exc: BaseException, outcome: RetryOutcome, attempts: int) -> None:
    if isinstance(exc, SyncError):
        exc.retry_outcome = outcome
        exc.attempts = attempts
    exc.add_note(f"retry: {outcome.value} after {attempts} attempt(s)")


class ResilientOperationRunner:
    """
    Bounded retry controller.

    `sleep` and `rng` are injectable so tests can record delays instead of
    waiting for them.
    """

    def __init__(
        self,
        defaults: RetryOptions | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.defaults = defaults or RetryOptions()
        self._sleep = sleep
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> ResilientOperationRunner:
        defaults = RetryOptions(
            max_retries=int(getattr(settings, "retry_max_retries", 3)),
            initial_delay=float(getattr(settings, "retry_initial_delay", 1.0)),
            max_delay=float(getattr(settings, "retry_max_delay", 10.0)),
            backoff_factor=float(getattr(settings, "retry_backoff_factor", 2.0)),
            timeout=getattr(settings, "request_timeout", None),
        )
        return cls(defaults, **kwargs)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        options: RetryOptions | None = None,
        *,
        action: str = "operation",
    ) -> T:
        opts = options or self.defaults
        max_retries = max(0, int(opts.max_retries))
        attempt = 0

        while True:
            try:
                if opts.timeout is not None:
                    return await asyncio.wait_for(operation(), timeout=opts.timeout)
                return await operation()
            except Exception as exc:
                attempt += 1

                non_retryable = is_non_retryable_error(exc)
                vetoed = opts.should_retry is not None and not opts.should_retry(exc)
                if non_retryable or vetoed:
                    _tag_failure(exc, RetryOutcome.NON_RETRYABLE, attempt)
                    # Conflicts are expected traffic; the repository logs them.
                    log = logger.debug if isinstance(exc, ConflictError) else logger.error
                    log(
                        "%s failed (non-retryable) attempts=%d error=%s: %s",
                        action,
                        attempt,
                        exc.__class__.__name__,
                        exc,
                    )
                    raise

                # Unknown errors are retried too; the log tells them apart from known transients.
                kind = "transient" if is_retryable_error(exc) else "unclassified"

                if attempt > max_retries:
                    _tag_failure(exc, RetryOutcome.EXHAUSTED, attempt)
                    logger.error(
                        "%s failed (exhausted, %s) attempts=%d max_retries=%d error=%s: %s",
                        action,
                        kind,
                        attempt,
                        max_retries,
                        exc.__class__.__name__,
                        exc,
                    )
                    raise

                delay = compute_backoff_delay(attempt, opts, self._rng)
                logger.warning(
                    "%s retry %d/%d in %.2fs after %s error %s: %s",
                    action,
                    attempt,
                    max_retries,
                    delay,
                    kind,
                    exc.__class__.__name__,
                    exc,
                )
                if opts.on_retry is not None:
                    opts.on_retry(attempt, exc, delay)

                await self._sleep(delay)


def with_retry(
    fn: Callable[..., Awaitable[T]],
    runner: ResilientOperationRunner,
    options: RetryOptions | None = None,
) -> Callable[..., Awaitable[T]]:
    """Wrap an async function so every call goes through `runner`."""

    async def wrapper(*args: Any, **kwargs: Any) -> T:
        return await runner.run(
            lambda: fn(*args, **kwargs),
            options,
            action=getattr(fn, "__name__", "operation"),
        )

    return wrapper


@dataclass(slots=True)
class BatchOutcome(Generic[T]):
    index: int
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_batch(
    runner: ResilientOperationRunner,
    operations: Sequence[Callable[[], Awaitable[T]]],
    options: RetryOptions | None = None,
    *,
    action: str = "batch",
) -> list[BatchOutcome[T]]:
    """
    Run independent operations concurrently, each with its own retry state.

    Individual failures are reported per index, never raised.
    """
    results = await asyncio.gather(
        *(runner.run(op, options, action=f"{action}[{i}]") for i, op in enumerate(operations)),
        return_exceptions=True,
    )

    out: list[BatchOutcome[T]] = []
    for i, res in enumerate(results):
        if isinstance(res, BaseException):
            if not isinstance(res, Exception):
                raise res
            logger.error("%s operation %d failed: %s", action, i, res)
            out.append(BatchOutcome(index=i, error=res))
        else:
            out.append(BatchOutcome(index=i, value=res))
    return out
