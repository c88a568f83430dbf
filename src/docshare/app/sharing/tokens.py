"""Share token generation and hashing.

The raw token is returned to the owner exactly once. Only ``hash_token(raw)``
is persisted, as the lookup key for inbound requests that present the raw
token. The token carries 256 bits of entropy, so its SHA-256 digest serves as
the index.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass

TOKEN_BYTES = 32  # 256-bit tokens.


@dataclass(frozen=True, slots=True)
class IssuedToken:
    raw: str
    token_hash: str

    def __repr__(self) -> str:
        return f'IssuedToken(token_hash={self.token_hash!r})'


def generate_share_token() -> str:
    """Generate a cryptographically random URL-safe share token."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(raw: str) -> str:
    """SHA-256 hex digest of a raw share token."""
    return hashlib.sha256(raw.encode('utf-8')).hexdigest()


def issue_share_token() -> IssuedToken:
    raw = generate_share_token()
    return IssuedToken(raw=raw, token_hash=hash_token(raw))
