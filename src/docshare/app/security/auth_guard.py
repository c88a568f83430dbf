"""Optional authentication for docshare routes.

Share links are opened by anonymous guests as well as signed-in users, so
the middleware never demands credentials. It verifies a Bearer token when
one is presented and sets ``request.state.auth_identity``; a token that is
present but invalid is rejected with 401 rather than silently downgraded to
anonymous. Routes that need an owner call ``get_auth_identity``.
"""

from __future__ import annotations

from fastapi import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..sharing.model import ANONYMOUS, RequesterIdentity
from .token_verify import (
    AuthIdentity,
    TokenVerificationError,
    TokenVerifier,
    extract_bearer_token,
)


class OptionalAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, token_verifier: TokenVerifier) -> None:
        super().__init__(app)
        self._verifier = token_verifier

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        request.state.auth_identity = None

        token = extract_bearer_token(request)
        if token:
            try:
                request.state.auth_identity = self._verifier.verify(token)
            except TokenVerificationError as exc:
                return JSONResponse(
                    status_code=401,
                    content={
                        'error': 'unauthorized',
                        'code': exc.code,
                        'detail': exc.detail,
                    },
                    headers={'WWW-Authenticate': 'Bearer'},
                )
        return await call_next(request)


def get_auth_identity(request: Request) -> AuthIdentity:
    """FastAPI dependency: the authenticated identity, or 401."""
    identity: AuthIdentity | None = getattr(request.state, 'auth_identity', None)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={
                'error': 'unauthorized',
                'code': 'no_credentials',
                'detail': 'Authentication required',
            },
            headers={'WWW-Authenticate': 'Bearer'},
        )
    return identity


def get_optional_identity(request: Request) -> RequesterIdentity:
    """FastAPI dependency: the caller as a ``RequesterIdentity`` (may be anonymous)."""
    identity: AuthIdentity | None = getattr(request.state, 'auth_identity', None)
    if identity is None:
        return ANONYMOUS
    return identity.as_requester()
