"""Share access error taxonomy.

Every lifecycle or policy violation is a ``ShareAccessError`` carrying a
stable ``code`` that the HTTP layer maps to a status. None of these are
fatal: the caller decides how to answer. ``ShareIntegrityError`` is the one
exception class that signals corrupted persisted state; it is logged loudly
and surfaced as a generic server error.
"""

from __future__ import annotations

from datetime import datetime


class ShareAccessError(Exception):
    """Base class for share-link and permission failures."""

    code = 'share_error'
    default_detail = 'Share access failed.'

    def __init__(self, detail: str = '') -> None:
        self.detail = detail or self.default_detail
        super().__init__(f'{self.code}: {self.detail}')


class ShareLinkExpired(ShareAccessError):
    """The link is past its ``expires_at``. Terminal."""

    code = 'share_expired'
    default_detail = 'This share link has expired.'

    def __init__(self, expired_at: datetime | None = None) -> None:
        self.expired_at = expired_at
        super().__init__()


class ShareLinkExhausted(ShareAccessError):
    """``access_count`` has reached ``max_accesses``. Terminal."""

    code = 'share_exhausted'
    default_detail = 'Maximum access limit reached.'

    def __init__(self, max_accesses: int | None = None) -> None:
        self.max_accesses = max_accesses
        super().__init__()


class ShareLinkThrottled(ShareAccessError):
    """Too many failed password attempts inside the cooldown window."""

    code = 'share_throttled'
    default_detail = 'Too many failed attempts. Please try again later.'

    def __init__(self, retry_after_seconds: int) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f'Too many failed attempts. Try again in {retry_after_seconds} seconds.'
        )


class InvalidSharePassword(ShareAccessError):
    code = 'invalid_password'
    default_detail = 'Invalid password.'


class PasswordRequired(ShareAccessError):
    code = 'password_required'
    default_detail = 'This share link is password protected.'


class NotPasswordProtected(ShareAccessError):
    """Password verification requested for a link that has no password."""

    code = 'not_password_protected'
    default_detail = 'This share link is not password protected.'


class SessionRequired(ShareAccessError):
    """A link continuation arrived without a valid share session."""

    code = 'session_required'
    default_detail = 'Open the share link again to continue.'


class NotAuthorizedError(ShareAccessError):
    """An authenticated user lacks the requested permission."""

    code = 'forbidden'
    default_detail = 'Not authorized to access this document.'


class DocumentNotFound(ShareAccessError):
    """Missing document, unknown token, or an anonymous caller without access.

    Anonymous callers cannot tell a private document from a missing one.
    """

    code = 'not_found'
    default_detail = 'Document not found.'


class ShareConflict(ShareAccessError):
    """A concurrent owner update won the compare-and-set race."""

    code = 'conflict'
    default_detail = 'The document was modified concurrently. Please retry.'


class ShareIntegrityError(Exception):
    """Persisted share state is malformed (bad hash, missing fields)."""

    def __init__(self, document_id: str | None, reason: str) -> None:
        self.document_id = document_id
        self.reason = reason
        super().__init__(f'Share integrity fault on document {document_id}: {reason}')
