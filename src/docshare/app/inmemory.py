"""In-memory collaborator implementations for local development and tests.

Used when ENVIRONMENT=local. They satisfy the protocols in ``protocols.py``
but keep everything in dicts (nothing survives a restart).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator

from .observability.logging import get_logger
from .protocols import DirectoryUser
from .sharing.model import Document

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class InMemoryUserDirectory:
    def __init__(self, users: list[DirectoryUser] | None = None) -> None:
        self._users: dict[str, DirectoryUser] = {}
        for user in users or ():
            self.add(user)

    def add(self, user: DirectoryUser) -> None:
        self._users[user.user_id] = user

    async def get_user(self, user_id: str) -> DirectoryUser | None:
        return self._users.get(user_id)


class InMemoryDocumentStorage:
    """Byte blobs keyed by storage handle."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self._blobs: dict[str, bytes] = {}
        self._chunk_size = chunk_size

    def put(self, handle: str, data: bytes) -> None:
        self._blobs[handle] = data

    async def read(self, handle: str) -> AsyncIterator[bytes]:
        data = self._blobs.get(handle)
        if data is None:
            raise FileNotFoundError(handle)
        for start in range(0, len(data), self._chunk_size):
            yield data[start:start + self._chunk_size]


@dataclass(frozen=True, slots=True)
class SentNotification:
    kind: str
    document_id: str
    recipient: str | None
    share_url: str | None = None


class RecordingGrantNotifier:
    """Keeps notifications in a list instead of sending email."""

    def __init__(self) -> None:
        self.sent: list[SentNotification] = []

    async def notify_grant(
        self,
        *,
        document: Document,
        principal: str,
        share_url: str | None,
        granted_by: str,
    ) -> None:
        self.sent.append(
            SentNotification('grant', document.id, principal, share_url),
        )

    async def notify_access(
        self,
        *,
        document: Document,
        email: str | None,
        accessed_at: datetime,
    ) -> None:
        self.sent.append(SentNotification('access', document.id, email))


class LoggingGrantNotifier:
    """Local-environment notifier: writes the notification to the log.

    The share URL carries the raw token, so only the document and recipient
    are logged.
    """

    async def notify_grant(
        self,
        *,
        document: Document,
        principal: str,
        share_url: str | None,
        granted_by: str,
    ) -> None:
        logger.info(
            'grant_notification',
            document_id=document.id,
            principal=principal,
            granted_by=granted_by,
            includes_link=share_url is not None,
        )

    async def notify_access(
        self,
        *,
        document: Document,
        email: str | None,
        accessed_at: datetime,
    ) -> None:
        logger.info(
            'access_notification',
            document_id=document.id,
            owner_id=document.owner_id,
            accessed_by=email or 'anonymous',
            accessed_at=accessed_at.isoformat(),
        )
