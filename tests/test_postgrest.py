# tests/test_postgrest.py

from __future__ import annotations

import json

import httpx
import pytest

from focus_sync.core.errors import (
    AuthError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    RemoteStoreError,
    ValidationError,
)
from focus_sync.core.identity import Identity, SessionIdentity
from focus_sync.remote.postgrest import PostgrestStore, error_from_response
from focus_sync.sync.retry import is_retryable_error
from focus_sync.sync.versioned import VersionedRecordStore

from .fakes import task_row


class _Recorder:
    """MockTransport handler returning canned responses and keeping requests."""

    def __init__(self, *responses: httpx.Response) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responses.pop(0)


def _store(recorder: _Recorder, identity: SessionIdentity | None = None) -> PostgrestStore:
    return PostgrestStore(
        "https://db.example.test/",
        "anon-key",
        identity=identity,
        transport=httpx.MockTransport(recorder),
    )


def test_requires_base_url() -> None:
    with pytest.raises(RuntimeError):
        PostgrestStore("", "anon-key")


@pytest.mark.asyncio
async def test_select_sends_filters_order_and_auth_headers() -> None:
    rec = _Recorder(httpx.Response(200, json=[task_row("a")]))
    identity = SessionIdentity(Identity(user_id="user-1", access_token="jwt-123"))
    store = _store(rec, identity)

    rows = await store.select("tasks", match={"user_id": "user-1", "completed": False}, order="position.asc")
    await store.aclose()

    assert rows[0]["id"] == "a"
    req = rec.requests[0]
    assert req.method == "GET"
    assert req.url.path == "/rest/v1/tasks"
    assert req.url.params["user_id"] == "eq.user-1"
    assert req.url.params["completed"] == "eq.false"
    assert req.url.params["order"] == "position.asc"
    assert req.headers["apikey"] == "anon-key"
    assert req.headers["Authorization"] == "Bearer jwt-123"


@pytest.mark.asyncio
async def test_anonymous_requests_use_api_key_as_bearer() -> None:
    rec = _Recorder(httpx.Response(200, json=[]))
    store = _store(rec)

    await store.select("tasks")
    await store.aclose()

    assert rec.requests[0].headers["Authorization"] == "Bearer anon-key"


@pytest.mark.asyncio
async def test_conditional_update_is_a_filtered_patch() -> None:
    rec = _Recorder(httpx.Response(200, json=[task_row("a", version=3, title="new")]))
    store = _store(rec)
    versioned = VersionedRecordStore(store, "tasks", scope={"user_id": "user-1"})

    result = await versioned.conditional_update("a", 2, {"title": "new"})
    await store.aclose()

    assert result.new_version == 3
    req = rec.requests[0]
    assert req.method == "PATCH"
    assert req.url.params["id"] == "eq.a"
    assert req.url.params["version"] == "eq.2"
    assert req.url.params["user_id"] == "eq.user-1"
    assert req.headers["Prefer"] == "return=representation"
    body = json.loads(req.content)
    assert body["title"] == "new"
    assert body["version"] == 3
    assert "updated_at" in body


@pytest.mark.asyncio
async def test_empty_patch_result_is_a_conflict() -> None:
    rec = _Recorder(httpx.Response(200, json=[]))
    store = _store(rec)

    with pytest.raises(ConflictError):
        await VersionedRecordStore(store, "tasks").conditional_update("a", 5, {"title": "x"})
    await store.aclose()


@pytest.mark.asyncio
async def test_update_and_delete_refuse_missing_filter() -> None:
    store = _store(_Recorder())

    with pytest.raises(ValidationError):
        await store.update("tasks", {"title": "x"}, match={})
    with pytest.raises(ValidationError):
        await store.delete("tasks", match={})
    await store.aclose()


@pytest.mark.asyncio
async def test_delete_counts_returned_rows() -> None:
    rec = _Recorder(httpx.Response(200, json=[task_row("a"), task_row("b")]))
    store = _store(rec)

    assert await store.delete("tasks", match={"parent_id": None}) == 2
    assert rec.requests[0].url.params["parent_id"] == "is.null"
    await store.aclose()


@pytest.mark.parametrize(
    "status, body, exc_type",
    [
        (400, {"code": "22P02", "message": "invalid input syntax"}, ValidationError),
        (401, {"code": "PGRST301", "message": "JWT expired"}, AuthError),
        (403, {"code": "42501", "message": "permission denied"}, PermissionDeniedError),
        (404, {"message": "relation missing"}, NotFoundError),
        (409, {"code": "23505", "message": "duplicate key value"}, RemoteStoreError),
        (503, {"message": "upstream down"}, RemoteStoreError),
    ],
)
def test_error_from_response_maps_status(status, body, exc_type) -> None:
    resp = httpx.Response(status, json=body)

    err = error_from_response(resp)

    assert type(err) is exc_type
    assert err.status == status
    assert err.message == body["message"]


@pytest.mark.asyncio
async def test_server_error_surfaces_as_retryable_remote_error() -> None:
    rec = _Recorder(httpx.Response(503, json={"message": "upstream down"}))
    store = _store(rec)

    with pytest.raises(RemoteStoreError) as exc_info:
        await store.select("tasks")
    await store.aclose()

    assert exc_info.value.code == "503"
    assert is_retryable_error(exc_info.value)


@pytest.mark.asyncio
async def test_duplicate_insert_keeps_postgres_code() -> None:
    rec = _Recorder(httpx.Response(409, json={"code": "23505", "message": "duplicate key value"}))
    store = _store(rec)

    with pytest.raises(RemoteStoreError) as exc_info:
        await store.insert("tasks", task_row("a"))
    await store.aclose()

    assert exc_info.value.code == "23505"
    assert not is_retryable_error(exc_info.value)
