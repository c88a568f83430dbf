"""Share audit events and token redaction.

Security invariant:
  Raw share tokens never appear in audit data or logs. Only the first
  8 characters are kept, for correlation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

# ── Constants ─────────────────────────────────────────────────────────

TOKEN_PREFIX_LENGTH = 8

# URL-safe base64 or hex runs long enough to be a token or a token hash.
_TOKEN_PATTERN = re.compile(r'[A-Za-z0-9_-]{20,}')

SHARE_CREATED = 'share.created'
SHARE_DISABLED = 'share.disabled'
SHARE_GRANTED = 'share.granted'
SHARE_REVOKED = 'share.revoked'
SHARE_REDEEMED = 'share.redeemed'
SHARE_DENIED = 'share.denied'
SHARE_PASSWORD_FAILED = 'share.password_failed'


# ── Token redaction ──────────────────────────────────────────────────


def redact_token(token: str | None) -> str:
    """Truncate a token to ``<prefix>...``, or ``<redacted>`` if too short."""
    if not token or len(token) < TOKEN_PREFIX_LENGTH:
        return '<redacted>'
    return f'{token[:TOKEN_PREFIX_LENGTH]}...'


def redact_string(text: str) -> str:
    """Replace any token-like run inside ``text`` with its redacted prefix."""
    return _TOKEN_PATTERN.sub(lambda m: redact_token(m.group(0)), text)


# ── Audit event model ───────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ShareAuditEvent:
    """One share operation.

    Attributes:
        event_type: One of the ``SHARE_*`` constants.
        document_id: Document concerned ('' when the token was unknown).
        token_prefix: Redacted token for correlation.
        actor_user_id: Authenticated actor, if any.
        principal: Grantee for grant/revoke events.
        detail: Reason code for denials and failures.
    """

    event_type: str
    document_id: str = ''
    token_prefix: str = '<redacted>'
    actor_user_id: str = ''
    principal: str = ''
    detail: str = ''
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            'event_type': self.event_type,
            'document_id': self.document_id,
            'token_prefix': self.token_prefix,
            'actor_user_id': self.actor_user_id,
            'principal': self.principal,
            'detail': redact_string(self.detail),
            'timestamp': self.timestamp.isoformat(),
        }


# ── Emitters ─────────────────────────────────────────────────────────


class ShareAuditEmitter(Protocol):
    async def emit(self, event: ShareAuditEvent) -> None: ...


class InMemoryShareAuditEmitter:
    """Test emitter that keeps events in a list."""

    def __init__(self) -> None:
        self.events: list[ShareAuditEvent] = []

    async def emit(self, event: ShareAuditEvent) -> None:
        self.events.append(event)

    def find(
        self,
        event_type: str | None = None,
        document_id: str | None = None,
    ) -> list[ShareAuditEvent]:
        result = self.events
        if event_type:
            result = [e for e in result if e.event_type == event_type]
        if document_id:
            result = [e for e in result if e.document_id == document_id]
        return result


class LoggingShareAuditEmitter:
    """Writes audit events to the structured log."""

    def __init__(self, logger=None) -> None:
        if logger is None:
            from ..observability.logging import get_logger

            logger = get_logger('docshare.audit')
        self._logger = logger

    async def emit(self, event: ShareAuditEvent) -> None:
        self._logger.info('share_audit', **event.to_dict())
