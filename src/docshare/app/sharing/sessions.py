"""Share sessions: signed proof that a link was redeemed.

A redemption (open, or verified password unlock) counts once against
``max_accesses`` and returns a short-lived HS256 JWT. Follow-up requests in
the same session (loading the file, downloading, commenting) present it and
are not counted again. The session is bound to the document and to a prefix
of the token hash, so regenerating the link invalidates every session.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

SESSION_AUDIENCE = 'docshare-share-session'
SESSION_ALGORITHM = 'HS256'
DEFAULT_SESSION_TTL_SECONDS = 3600
_LINK_BINDING_LENGTH = 16


@dataclass(frozen=True, slots=True)
class ShareSessionClaims:
    session_id: str
    document_id: str
    password_verified: bool
    expires_at: datetime


class ShareSessionIssuer:
    """Issues and verifies share-session tokens.

    Args:
        secret: HMAC secret (the application's session secret).
        ttl_seconds: Session lifetime.
    """

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
    ) -> None:
        if not secret:
            raise ValueError('share session secret is required')
        self._secret = secret
        self._ttl = timedelta(seconds=ttl_seconds)

    def issue(
        self,
        *,
        document_id: str,
        token_hash: str,
        session_id: str,
        password_verified: bool,
        now: datetime,
        not_after: datetime | None = None,
    ) -> str:
        """Sign a session token; never outlives ``not_after`` (link expiry)."""
        expires_at = now + self._ttl
        if not_after is not None and not_after < expires_at:
            expires_at = not_after
        claims = {
            'aud': SESSION_AUDIENCE,
            'sub': document_id,
            'jti': session_id,
            'lnk': token_hash[:_LINK_BINDING_LENGTH],
            'pwd': password_verified,
            'iat': int(now.timestamp()),
            'exp': int(expires_at.timestamp()),
        }
        return jwt.encode(claims, self._secret, algorithm=SESSION_ALGORITHM)

    def verify(
        self,
        token: str | None,
        *,
        document_id: str,
        token_hash: str,
    ) -> ShareSessionClaims | None:
        """Return the claims, or None for a missing/invalid/foreign session."""
        if not token:
            return None
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[SESSION_ALGORITHM],
                audience=SESSION_AUDIENCE,
                options={'require': ['sub', 'jti', 'lnk', 'exp']},
            )
        except jwt.InvalidTokenError:
            return None
        if claims['sub'] != document_id:
            return None
        if claims['lnk'] != token_hash[:_LINK_BINDING_LENGTH]:
            return None
        return ShareSessionClaims(
            session_id=claims['jti'],
            document_id=claims['sub'],
            password_verified=bool(claims.get('pwd', False)),
            expires_at=datetime.fromtimestamp(claims['exp'], tz=timezone.utc),
        )
