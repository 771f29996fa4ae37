# src/focus_sync/remote/postgrest.py

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

import httpx

from ..core.errors import (
    AuthError,
    InvalidResponseError,
    NotFoundError,
    PermissionDeniedError,
    RemoteStoreError,
    SyncError,
    ValidationError,
)
from ..core.ports import IdentityProvider, Row

logger = logging.getLogger(__name__)

_ERRORS_BY_STATUS: dict[int, type[SyncError]] = {
    400: ValidationError,
    401: AuthError,
    403: PermissionDeniedError,
    404: NotFoundError,
    422: ValidationError,
}


def _filter_value(val: Any) -> str:
    if val is None:
        return "is.null"
    if isinstance(val, bool):
        return f"eq.{'true' if val else 'false'}"
    return f"eq.{val}"


def _filters(match: Mapping[str, Any] | None) -> dict[str, str]:
    return {k: _filter_value(v) for k, v in (match or {}).items()}


def error_from_response(resp: httpx.Response) -> SyncError:
    """
    Build a SyncError from a PostgREST error body:
    {"code": "...", "message": "...", "details": ..., "hint": ...}
    """
    status = resp.status_code
    code: str | None = None
    message = resp.reason_phrase or f"HTTP {status}"
    try:
        body = resp.json()
    except (json.JSONDecodeError, ValueError):
        body = None
    if isinstance(body, dict):
        code = str(body.get("code") or "") or None
        message = str(body.get("message") or body.get("error") or message)

    cls = _ERRORS_BY_STATUS.get(status, RemoteStoreError)
    return cls(message, code=code or str(status), status=status)


class PostgrestStore:
    """
    RemoteStore over a PostgREST endpoint (the hosted database's REST API).

    Filters are equality only (`col=eq.value`). The conditional update used by
    optimistic locking is a PATCH with id and version filters; PostgREST runs
    it as one UPDATE ... WHERE statement, so the check-and-set is atomic in
    the database. `Prefer: return=representation` makes writes return the
    affected rows, and an empty list means zero rows matched.

    Transport failures and timeouts are left as httpx exceptions; the retry
    runner treats them as transient.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        *,
        identity: IdentityProvider | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url or not base_url.strip():
            raise RuntimeError("REST URL is not set. Set FOCUS_REST_URL in your .env.")
        self._api_key = api_key
        self._identity = identity
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/rest/v1",
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, *, representation: bool = False) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["apikey"] = self._api_key
        ident = self._identity.current() if self._identity is not None else None
        token = (ident.access_token if ident else None) or self._api_key
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if representation:
            headers["Prefer"] = "return=representation"
        return headers

    async def _send(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Any = None,
        representation: bool = False,
    ) -> Any:
        resp = await self._client.request(
            method,
            f"/{table}",
            params=params,
            json=body,
            headers=self._headers(representation=representation),
        )
        if resp.is_error:
            err = error_from_response(resp)
            logger.debug("%s /%s -> %s %s", method, table, resp.status_code, err)
            raise err
        if not resp.content:
            return None
        return resp.json()

    # ---- RemoteStore ----

    async def select(
        self,
        table: str,
        *,
        match: Mapping[str, Any] | None = None,
        order: str | None = None,
    ) -> list[Row]:
        params = {"select": "*", **_filters(match)}
        if order:
            params["order"] = order
        data = await self._send("GET", table, params=params)
        return list(data or [])

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        data = await self._send("POST", table, body=dict(row), representation=True)
        if not data:
            raise InvalidResponseError(f"insert into {table} returned no row")
        return dict(data[0])

    async def update(
        self,
        table: str,
        values: Mapping[str, Any],
        *,
        match: Mapping[str, Any],
    ) -> list[Row]:
        if not match:
            raise ValidationError("refusing to update without a filter")
        data = await self._send("PATCH", table, params=_filters(match), body=dict(values), representation=True)
        return list(data or [])

    async def delete(self, table: str, *, match: Mapping[str, Any]) -> int:
        if not match:
            raise ValidationError("refusing to delete without a filter")
        data = await self._send("DELETE", table, params=_filters(match), representation=True)
        return len(data or [])
