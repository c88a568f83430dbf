"""Repository and collaborator protocols for dependency injection.

Concrete implementations (InMemory for local dev and tests, Supabase for
deployed environments) satisfy these contracts; ``create_app`` accepts any
of them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator, Protocol, runtime_checkable

from .sharing.model import (
    AccessRecord,
    Document,
    Grant,
    ShareMode,
    ShareSettings,
    Visitor,
)


@runtime_checkable
class DocumentShareRepository(Protocol):
    """Persistence of the share state embedded in document records.

    Counter mutations (``redeem``, ``claim_password_attempt``,
    ``record_view``) are atomic conditional updates evaluated against the
    latest persisted state. Owner writes (``save_share``, ``save_grants``)
    are compare-and-set on ``Document.revision`` and raise ``ShareConflict``
    when another write got there first.
    """

    async def get(self, document_id: str) -> Document | None: ...

    async def get_by_token_hash(self, token_hash: str) -> Document | None: ...

    async def create(self, document: Document) -> Document: ...

    async def save_share(
        self,
        document_id: str,
        expected_revision: int,
        *,
        share_token: str | None,
        share_mode: ShareMode,
        share_settings: ShareSettings | None,
        shared_with: tuple[Grant, ...],
    ) -> Document: ...

    async def save_grants(
        self,
        document_id: str,
        expected_revision: int,
        shared_with: tuple[Grant, ...],
    ) -> Document: ...

    async def redeem(
        self,
        document_id: str,
        token_hash: str,
        entry: AccessRecord,
        now: datetime,
        *,
        visitor: Visitor | None = None,
        password_verified: bool = False,
    ) -> ShareSettings: ...

    async def claim_password_attempt(
        self,
        document_id: str,
        token_hash: str,
        now: datetime,
    ) -> ShareSettings: ...

    async def record_view(
        self,
        document_id: str,
        now: datetime,
        window: timedelta,
    ) -> bool: ...


@dataclass(frozen=True, slots=True)
class DirectoryUser:
    user_id: str
    email: str
    name: str = ''


@runtime_checkable
class UserDirectory(Protocol):
    """Read-only lookup of registered users."""

    async def get_user(self, user_id: str) -> DirectoryUser | None: ...


@runtime_checkable
class DocumentStorage(Protocol):
    """PDF byte storage (local disk or S3). Only gated, never inspected."""

    def read(self, handle: str) -> AsyncIterator[bytes]: ...


@runtime_checkable
class GrantNotifier(Protocol):
    """Outbound notifications, attempted only after the write is durable."""

    async def notify_grant(
        self,
        *,
        document: Document,
        principal: str,
        share_url: str | None,
        granted_by: str,
    ) -> None: ...

    async def notify_access(
        self,
        *,
        document: Document,
        email: str | None,
        accessed_at: datetime,
    ) -> None: ...
