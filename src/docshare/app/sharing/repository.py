"""In-memory document share repository.

Each primitive reads, decides and writes without an ``await`` in between, so
on a single event loop it behaves like the conditional ``UPDATE ... WHERE``
statements the Supabase backend issues. ``latency`` injects a suspension
point *before* that critical section to let tests interleave callers the way
real round-trips would.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta

from .errors import DocumentNotFound, ShareConflict
from .lifecycle import claim_attempt, record_attempt, record_redemption, should_count_view
from .model import (
    AccessRecord,
    Document,
    Grant,
    ShareMode,
    ShareSettings,
    Visitor,
)
from .policy import token_matches


class InMemoryDocumentShareRepository:
    """Dict-backed repository for local development and tests."""

    def __init__(self, *, latency: float | None = None) -> None:
        self._documents: dict[str, Document] = {}
        self._latency = latency

    async def _round_trip(self) -> None:
        if self._latency is not None:
            await asyncio.sleep(self._latency)

    async def get(self, document_id: str) -> Document | None:
        await self._round_trip()
        return self._documents.get(document_id)

    async def get_by_token_hash(self, token_hash: str) -> Document | None:
        await self._round_trip()
        for doc in self._documents.values():
            if token_matches(doc, token_hash):
                return doc
        return None

    async def create(self, document: Document) -> Document:
        await self._round_trip()
        self._documents[document.id] = document
        return document

    def _require(self, document_id: str, expected_revision: int) -> Document:
        doc = self._documents.get(document_id)
        if doc is None:
            raise DocumentNotFound()
        if doc.revision != expected_revision:
            raise ShareConflict()
        return doc

    def _require_link(self, document_id: str, token_hash: str) -> Document:
        doc = self._documents.get(document_id)
        if doc is None or not doc.is_public or not token_matches(doc, token_hash):
            raise DocumentNotFound()
        return doc

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
        await self._round_trip()
        doc = self._require(document_id, expected_revision)
        updated = replace(
            doc.with_share(
                share_token=share_token,
                share_mode=share_mode,
                share_settings=share_settings,
                shared_with=shared_with,
            ),
            revision=doc.revision + 1,
        )
        self._documents[document_id] = updated
        return updated

    async def save_grants(
        self,
        document_id: str,
        expected_revision: int,
        shared_with: tuple[Grant, ...],
    ) -> Document:
        await self._round_trip()
        doc = self._require(document_id, expected_revision)
        updated = replace(doc, shared_with=shared_with, revision=doc.revision + 1)
        self._documents[document_id] = updated
        return updated

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
        await self._round_trip()
        doc = self._require_link(document_id, token_hash)
        settings = doc.share_settings
        if password_verified:
            settings = record_attempt(settings, True, now)
        settings = record_redemption(settings, entry, now, visitor)
        self._documents[document_id] = replace(doc, share_settings=settings)
        return settings

    async def claim_password_attempt(
        self,
        document_id: str,
        token_hash: str,
        now: datetime,
    ) -> ShareSettings:
        await self._round_trip()
        doc = self._require_link(document_id, token_hash)
        settings = claim_attempt(doc.share_settings, now)
        self._documents[document_id] = replace(doc, share_settings=settings)
        return settings

    async def record_view(
        self,
        document_id: str,
        now: datetime,
        window: timedelta,
    ) -> bool:
        await self._round_trip()
        doc = self._documents.get(document_id)
        if doc is None or not should_count_view(doc.last_viewed, now, window):
            return False
        self._documents[document_id] = replace(
            doc, view_count=doc.view_count + 1, last_viewed=now,
        )
        return True
