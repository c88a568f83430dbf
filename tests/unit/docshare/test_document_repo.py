from __future__ import annotations

import json
from datetime import timedelta
from typing import Any

import httpx
import pytest
import pytest_asyncio

from docshare.app.db.document_repo import SupabaseDocumentShareRepository
from docshare.app.db.supabase_client import SupabaseClient
from docshare.app.sharing.errors import (
    DocumentNotFound,
    ShareConflict,
    ShareLinkExhausted,
    ShareLinkThrottled,
)
from docshare.app.sharing.lifecycle import initial_settings
from docshare.app.sharing.model import AccessRecord, PublicLink
from docshare.app.sharing.tokens import issue_share_token

from docshare_factories import NOW, make_document


class FakePostgrest:
    """Routes requests to canned responses and records what was sent."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: list[httpx.Response] = []

    def queue(self, status: int, payload: Any) -> None:
        self.responses.append(httpx.Response(status, json=payload))

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


@pytest.fixture
def postgrest():
    return FakePostgrest()


@pytest_asyncio.fixture
async def repo(postgrest):
    async with httpx.AsyncClient(transport=httpx.MockTransport(postgrest.handler)) as http:
        yield SupabaseDocumentShareRepository(
            SupabaseClient(
                supabase_url="https://example.supabase.co",
                service_role_key="svc-key",
                http_client=http,
            )
        )


def _record(**kwargs):
    return make_document(mode=PublicLink(), **kwargs).to_record()


@pytest.mark.asyncio
async def test_get_by_token_hash_filters_public_rows(repo, postgrest):
    issued = issue_share_token()
    postgrest.queue(200, [_record(token_hash=issued.token_hash)])

    doc = await repo.get_by_token_hash(issued.token_hash)

    assert doc.share_token == issued.token_hash
    url = str(postgrest.requests[0].url)
    assert f"share_token=eq.{issued.token_hash}" in url
    assert "is_public=is.true" in url


@pytest.mark.asyncio
async def test_get_missing_returns_none(repo, postgrest):
    postgrest.queue(200, [])
    assert await repo.get("missing") is None


@pytest.mark.asyncio
async def test_save_grants_is_compare_and_set(repo, postgrest):
    record = _record()
    record["revision"] = 5
    postgrest.queue(200, [record])

    doc = await repo.save_grants("doc_1", 4, ())

    request = postgrest.requests[0]
    assert request.method == "PATCH"
    assert "revision=eq.4" in str(request.url)
    assert json.loads(request.content)["revision"] == 5
    assert doc.revision == 5


@pytest.mark.asyncio
async def test_lost_race_raises_conflict(repo, postgrest):
    postgrest.queue(200, [])
    postgrest.queue(200, [_record()])

    with pytest.raises(ShareConflict):
        await repo.save_share(
            "doc_1",
            0,
            share_token=None,
            share_mode=PublicLink(),
            share_settings=initial_settings(NOW),
            shared_with=(),
        )


@pytest.mark.asyncio
async def test_compare_and_set_on_missing_document(repo, postgrest):
    postgrest.queue(200, [])
    postgrest.queue(200, [])

    with pytest.raises(DocumentNotFound):
        await repo.save_grants("gone", 0, ())


@pytest.mark.asyncio
async def test_save_share_writes_public_flag_and_password_hash(repo, postgrest):
    postgrest.queue(200, [_record()])
    issued = issue_share_token()

    await repo.save_share(
        "doc_1",
        0,
        share_token=issued.token_hash,
        share_mode=PublicLink(),
        share_settings=initial_settings(NOW, max_accesses=2),
        shared_with=(),
    )

    body = json.loads(postgrest.requests[0].content)
    assert body["is_public"] is True
    assert body["share_token"] == issued.token_hash
    assert body["share_settings"]["password_hash"] is None
    assert body["share_settings"]["max_accesses"] == 2


@pytest.mark.asyncio
async def test_redeem_calls_rpc(repo, postgrest):
    settings = initial_settings(NOW, max_accesses=2)
    postgrest.queue(200, {"status": "ok", "share_settings": settings.to_dict(PublicLink())})

    result = await repo.redeem("doc_1", "hash", AccessRecord(NOW), NOW)

    assert result.max_accesses == 2
    request = postgrest.requests[0]
    assert str(request.url).endswith("/rpc/docshare_redeem_link")
    params = json.loads(request.content)
    assert params["p_document_id"] == "doc_1"
    assert params["p_token_hash"] == "hash"
    assert params["p_password_verified"] is False


@pytest.mark.asyncio
async def test_redeem_rejection_maps_to_lifecycle_error(repo, postgrest):
    exhausted = initial_settings(NOW, max_accesses=1)
    data = exhausted.to_dict(PublicLink())
    data["access_count"] = 1
    postgrest.queue(200, {"status": "rejected", "reason": "exhausted", "share_settings": data})

    with pytest.raises(ShareLinkExhausted):
        await repo.redeem("doc_1", "hash", AccessRecord(NOW), NOW)


@pytest.mark.asyncio
async def test_claim_rejection_carries_retry_after(repo, postgrest):
    data = initial_settings(NOW).to_dict(PublicLink())
    data["access_attempts"] = 5
    data["last_access_attempt"] = (NOW - timedelta(minutes=5)).isoformat()
    postgrest.queue(200, {"status": "rejected", "reason": "throttled", "share_settings": data})

    with pytest.raises(ShareLinkThrottled) as exc_info:
        await repo.claim_password_attempt("doc_1", "hash", NOW)
    assert exc_info.value.retry_after_seconds == 600


@pytest.mark.asyncio
async def test_rpc_not_found(repo, postgrest):
    postgrest.queue(200, {"status": "not_found"})
    with pytest.raises(DocumentNotFound):
        await repo.redeem("doc_1", "hash", AccessRecord(NOW), NOW)


@pytest.mark.asyncio
async def test_record_view_passes_window(repo, postgrest):
    postgrest.queue(200, True)

    assert await repo.record_view("doc_1", NOW, timedelta(minutes=5)) is True
    assert json.loads(postgrest.requests[0].content)["p_window_seconds"] == 300
