# src/focus_sync/core/errors.py

"""
Error taxonomy for the sync layer.

Every error that crosses a layer boundary is a SyncError (or a transport
exception from httpx / asyncio, which the retry classifier treats as
transient). Context fields (record_id, version, attempts) are filled in
as the error travels up so the repository can log and report it.
"""

from __future__ import annotations

from enum import StrEnum


class RetryOutcome(StrEnum):
    """Why the retry runner stopped retrying an error."""

    NON_RETRYABLE = "non-retryable"
    EXHAUSTED = "exhausted"


class SyncError(Exception):
    """Base class with a machine-readable code and an optional HTTP status."""

    default_code = "SYNC_ERROR"
    default_status: int | None = None

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status: int | None = None,
        record_id: str | None = None,
        version: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status = status if status is not None else self.default_status
        self.record_id = record_id
        self.version = version
        self.attempts: int | None = None
        self.retry_outcome: RetryOutcome | None = None

    def __str__(self) -> str:
        return self.message


class RemoteStoreError(SyncError):
    """Error reported by the remote store (PostgREST code + HTTP status)."""

    default_code = "REMOTE_ERROR"


class InvalidResponseError(RemoteStoreError):
    """The store answered, but the answer breaks its contract (not retryable)."""

    default_code = "INVALID_RESPONSE"
    default_status = 422


class ValidationError(SyncError):
    default_code = "VALIDATION_ERROR"
    default_status = 400


class AuthError(SyncError):
    default_code = "AUTH_ERROR"
    default_status = 401


class PermissionDeniedError(SyncError):
    default_code = "FORBIDDEN"
    default_status = 403


class NotFoundError(SyncError):
    default_code = "NOT_FOUND"
    default_status = 404


class ConflictError(SyncError):
    """
    The conditional write matched zero rows: the record's version moved on
    (or the record is gone). A logical conflict, never a transient fault.
    """

    default_code = "CONFLICT"

    def __init__(self, record_id: str, expected_version: int, message: str | None = None) -> None:
        super().__init__(
            message or f"Record {record_id} was modified elsewhere (expected version {expected_version}).",
            record_id=record_id,
            version=expected_version,
        )

    @property
    def expected_version(self) -> int:
        return int(self.version or 0)


_MAX_MESSAGE_LEN = 100


def friendly_error_message(err: BaseException) -> str:
    """Map an error to a short, user-facing message."""
    if isinstance(err, ConflictError):
        return "This task was changed elsewhere. Please refresh and try again."

    code = str(getattr(err, "code", "") or "")
    status = getattr(err, "status", None)
    msg = (str(err) or "").strip()
    low = msg.lower()

    if "unique constraint" in low or code == "23505":
        return "This item already exists."
    if "foreign key constraint" in low or code == "23503":
        return "Cannot complete this action due to related data."
    if isinstance(err, NotFoundError) or "not found" in low or code == "PGRST116":
        return "Item not found."
    if isinstance(err, (AuthError, PermissionDeniedError)) or "unauthorized" in low or status in (401, 403):
        return "You are not authorized to perform this action."
    if isinstance(err, ValidationError):
        return msg[:_MAX_MESSAGE_LEN] or "Invalid input."
    if isinstance(err, (TimeoutError, ConnectionError)) or "network" in low or "timeout" in low:
        return "Network error. Please check your connection and try again."
    if type(err).__module__.startswith("httpx"):
        return "Network error. Please check your connection and try again."

    if not msg:
        return "Something went wrong. Please try again."
    if len(msg) > _MAX_MESSAGE_LEN:
        msg = msg[:_MAX_MESSAGE_LEN] + "..."
    return f"{msg} Please try again."
