"""Supabase-backed DocumentShareRepository.

Share state lives on the ``documents`` row (``share_token``, ``is_public``,
``share_settings`` jsonb, ``shared_with`` jsonb, ``revision``).

Security invariants:
  - Counter mutations run inside Postgres functions
    (``migrations/001_document_shares.sql``) that lock the row, evaluate the
    lifecycle guard against the persisted counters and update in one
    statement. Python never does fetch-increment-save on counters.
  - Owner writes are ``PATCH ... ?id=eq.X&revision=eq.N``; zero rows back
    means another writer won and ``ShareConflict`` is raised.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from ..sharing.errors import DocumentNotFound, ShareConflict
from ..sharing.lifecycle import check_active
from ..sharing.model import (
    AccessRecord,
    Document,
    Grant,
    ShareMode,
    ShareSettings,
    Visitor,
)
from .supabase_client import SupabaseClient


class SupabaseDocumentShareRepository:
    """DocumentShareRepository backed by ``public.documents`` via PostgREST."""

    TABLE = "documents"

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def get(self, document_id: str) -> Document | None:
        rows = await self._client.select(self.TABLE, {"id": document_id}, limit=1)
        return Document.from_record(rows[0]) if rows else None

    async def get_by_token_hash(self, token_hash: str) -> Document | None:
        rows = await self._client.select(
            self.TABLE,
            {"share_token": token_hash, "is_public": ("is", True)},
            limit=1,
        )
        return Document.from_record(rows[0]) if rows else None

    async def create(self, document: Document) -> Document:
        rows = await self._client.insert(self.TABLE, document.to_record())
        return Document.from_record(rows[0])

    async def save_share(
        self,
        document_id: str,
        expected_revision: int,
        *,
        share_token: str | None,
        share_mode: ShareMode,
        share_settings: ShareSettings | None,
        shared_with: tuple[Grant, ...],
    ) -> Document:
        data = {
            "share_token": share_token,
            "is_public": share_token is not None,
            "share_settings": (
                share_settings.to_dict(share_mode) if share_settings else None
            ),
            "shared_with": [g.to_dict() for g in shared_with],
        }
        return await self._compare_and_set(document_id, expected_revision, data)

    async def save_grants(
        self,
        document_id: str,
        expected_revision: int,
        shared_with: tuple[Grant, ...],
    ) -> Document:
        data = {"shared_with": [g.to_dict() for g in shared_with]}
        return await self._compare_and_set(document_id, expected_revision, data)

    async def _compare_and_set(
        self,
        document_id: str,
        expected_revision: int,
        data: dict[str, Any],
    ) -> Document:
        rows = await self._client.update(
            self.TABLE,
            {"id": document_id, "revision": expected_revision},
            {**data, "revision": expected_revision + 1},
        )
        if rows:
            return Document.from_record(rows[0])
        if await self.get(document_id) is None:
            raise DocumentNotFound()
        raise ShareConflict()

    async def redeem(
        self,
        document_id: str,
        token_hash: str,
        entry: AccessRecord,
        now: datetime,
        *,
        visitor: Visitor | None = None,
        password_verified: bool = False,
    ) -> ShareSettings:
        result = await self._client.rpc(
            "docshare_redeem_link",
            {
                "p_document_id": document_id,
                "p_token_hash": token_hash,
                "p_entry": entry.to_dict(),
                "p_visitor": visitor.to_dict() if visitor else None,
                "p_now": now.isoformat(),
                "p_password_verified": password_verified,
            },
        )
        return _settings_or_raise(result, now)

    async def claim_password_attempt(
        self,
        document_id: str,
        token_hash: str,
        now: datetime,
    ) -> ShareSettings:
        result = await self._client.rpc(
            "docshare_claim_password_attempt",
            {
                "p_document_id": document_id,
                "p_token_hash": token_hash,
                "p_now": now.isoformat(),
            },
        )
        return _settings_or_raise(result, now)

    async def record_view(
        self,
        document_id: str,
        now: datetime,
        window: timedelta,
    ) -> bool:
        result = await self._client.rpc(
            "docshare_record_view",
            {
                "p_document_id": document_id,
                "p_now": now.isoformat(),
                "p_window_seconds": int(window.total_seconds()),
            },
        )
        return bool(result)


def _settings_or_raise(result: dict[str, Any], now: datetime) -> ShareSettings:
    """Decode an RPC result ``{status, reason?, share_settings?}``.

    A rejection carries the settings the database evaluated; re-running the
    lifecycle guard on them raises the matching error with its details
    (expiry time, retry-after).
    """
    status = result.get("status")
    if status == "not_found":
        raise DocumentNotFound()
    settings = ShareSettings.from_dict(result["share_settings"])
    if status == "ok":
        return settings
    check_active(settings, now)
    # Guard and database disagree on the snapshot; report a lost race.
    raise ShareConflict(f"redemption rejected: {result.get('reason')}")
