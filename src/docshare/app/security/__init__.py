"""Authentication for docshare routes."""

from .auth_guard import (
    OptionalAuthMiddleware,
    get_auth_identity,
    get_optional_identity,
)
from .token_verify import (
    AuthIdentity,
    TokenVerificationError,
    TokenVerifier,
    create_token_verifier,
    extract_bearer_token,
)

__all__ = [
    'AuthIdentity',
    'OptionalAuthMiddleware',
    'TokenVerificationError',
    'TokenVerifier',
    'create_token_verifier',
    'extract_bearer_token',
    'get_auth_identity',
    'get_optional_identity',
]
