from __future__ import annotations

from typing import Any

import httpx
import pytest

from docshare.app.db.errors import (
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
)
from docshare.app.db.supabase_client import SupabaseClient


def _client(http_client: httpx.AsyncClient) -> SupabaseClient:
    return SupabaseClient(
        supabase_url="https://example.supabase.co/",
        service_role_key="svc-key",
        http_client=http_client,
    )


@pytest.mark.asyncio
async def test_select_builds_postgrest_query():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["headers"] = dict(request.headers)
        return httpx.Response(200, json=[{"id": "doc_1"}])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        rows = await _client(http_client).select(
            "documents",
            {"share_token": "abc", "is_public": ("is", True)},
            limit=1,
        )

    assert rows == [{"id": "doc_1"}]
    assert seen["method"] == "GET"
    assert seen["url"].startswith("https://example.supabase.co/rest/v1/documents?")
    assert "share_token=eq.abc" in seen["url"]
    assert "is_public=is.true" in seen["url"]
    assert "limit=1" in seen["url"]
    assert seen["headers"]["apikey"] == "svc-key"
    assert seen["headers"]["authorization"] == "Bearer svc-key"


@pytest.mark.asyncio
async def test_update_sends_patch_with_representation():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["prefer"] = request.headers.get("prefer")
        return httpx.Response(200, json=[])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        rows = await _client(http_client).update(
            "documents", {"id": "doc_1", "revision": 3}, {"revision": 4},
        )

    assert rows == []
    assert seen["method"] == "PATCH"
    assert "revision=eq.3" in seen["url"]
    assert seen["prefer"] == "return=representation"


@pytest.mark.asyncio
async def test_rpc_posts_params():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = request.content
        return httpx.Response(200, json={"status": "ok"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        result = await _client(http_client).rpc("docshare_record_view", {"p_document_id": "d"})

    assert result == {"status": "ok"}
    assert seen["url"].endswith("/rest/v1/rpc/docshare_record_view")
    assert b'"p_document_id"' in seen["body"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "err_cls"),
    [
        (401, SupabaseAuthError),
        (403, SupabaseAuthError),
        (404, SupabaseNotFoundError),
        (409, SupabaseConflictError),
        (500, SupabaseError),
    ],
)
async def test_errors_map_to_typed_exceptions(status, err_cls):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"message": "nope", "code": "X1"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        with pytest.raises(err_cls) as exc_info:
            await _client(http_client).select("documents")

    assert exc_info.value.status_code == status
    assert exc_info.value.code == "X1"
    assert "svc-key" not in str(exc_info.value)


@pytest.mark.asyncio
async def test_non_list_select_payload_is_an_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        with pytest.raises(SupabaseError):
            await _client(http_client).select("documents")


def test_requires_url_and_key():
    with pytest.raises(ValueError):
        SupabaseClient(supabase_url="", service_role_key="k")
    with pytest.raises(ValueError):
        SupabaseClient(supabase_url="https://x", service_role_key="")
