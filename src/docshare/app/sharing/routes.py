"""Share management and share-link redemption API endpoints.

Owner endpoints (authenticated, owner only):

  POST   /api/v1/documents/{document_id}/share                → create/regenerate link
  DELETE /api/v1/documents/{document_id}/share                → disable link
  POST   /api/v1/documents/{document_id}/grants               → grant (+ link)
  DELETE /api/v1/documents/{document_id}/grants/{principal}   → revoke grant
  GET    /api/v1/documents/{document_id}/permissions          → caller's permissions

Link endpoints (anonymous or authenticated):

  GET    /api/v1/shared/{token}                      → redeem a public link
  POST   /api/v1/shared/{token}/verify               → unlock a password link
  GET    /api/v1/shared/{token}/authorize/{action}   → session continuation check
  GET    /api/v1/shared/{token}/download             → stream the PDF

Token security:
  - The raw token is returned exactly once, in the create response.
  - Redemptions return a share-session token; follow-up requests send it in
    the ``X-Share-Session`` header and are not counted again.

This module provides:
  ``create_share_router``: FastAPI router factory with injected deps.
  ``share_error_response``: maps ``ShareAccessError`` to a JSON response.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from ..security.auth_guard import get_auth_identity, get_optional_identity
from ..security.token_verify import AuthIdentity
from .errors import ShareAccessError, ShareLinkThrottled
from .lifecycle import parse_link_expiry
from .model import (
    Action,
    PasswordLink,
    PermissionSet,
    RequesterIdentity,
    normalize_principal,
)
from .service import Redemption, ShareService

SESSION_HEADER = 'X-Share-Session'

# ── Error mapping ────────────────────────────────────────────────────

ERROR_STATUS: dict[str, int] = {
    'not_found': 404,
    'forbidden': 403,
    'share_expired': 403,
    'share_exhausted': 403,
    'share_throttled': 429,
    'invalid_password': 401,
    'password_required': 401,
    'session_required': 401,
    'not_password_protected': 400,
    'conflict': 409,
}


def share_error_response(exc: ShareAccessError) -> JSONResponse:
    content = {'error': exc.code, 'detail': exc.detail}
    headers = {}
    if isinstance(exc, ShareLinkThrottled):
        content['retry_after'] = exc.retry_after_seconds
        headers['Retry-After'] = str(exc.retry_after_seconds)
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.code, 400),
        content=content,
        headers=headers,
    )


def _bad_request(error: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={'error': error, 'detail': detail})


# ── Request schemas ──────────────────────────────────────────────────


class ShareRequest(BaseModel):
    """Request body for link creation."""

    share_type: Literal['public', 'password'] = 'public'
    password: str | None = Field(default=None, min_length=1, max_length=256)
    link_expiry: str | None = Field(
        default=None, description="Lifetime such as '7d', '12h' or '30m'",
    )
    allow_download: bool = True
    allow_comments: bool = True
    notify_on_access: bool = False
    max_accesses: int | None = Field(default=None, ge=1)


class GrantRequest(BaseModel):
    principal: str = Field(..., min_length=1, max_length=320)
    can_view: bool = True
    can_comment: bool = False
    can_download: bool = False
    expires_at: datetime | None = None
    fresh_link: bool = False
    link_expiry: str | None = None
    password: str | None = Field(default=None, min_length=1, max_length=256)
    notify: bool = True


class VerifyRequest(BaseModel):
    password: str = Field(..., min_length=1, max_length=256)
    email: str | None = Field(
        default=None, max_length=320,
        description='Recorded in the access history only; never an identity',
    )


# ── Shared helpers ───────────────────────────────────────────────────


def _visitor_info(request: Request) -> dict[str, str]:
    return {
        'user_agent': request.headers.get('user-agent', ''),
        'ip': request.client.host if request.client else '',
    }


def _redemption_body(result: Redemption) -> dict:
    doc = result.document
    return {
        'document': {'id': doc.id, 'name': doc.name},
        'permissions': result.permissions.to_dict(),
        'counted': result.counted,
        'session_token': result.session_token,
        'remaining_accesses': result.remaining_accesses,
    }


# ── Route factory ────────────────────────────────────────────────────


def create_share_router(service: ShareService) -> APIRouter:
    """Create the share router.

    Args:
        service: Share orchestration service.

    Returns:
        FastAPI router with owner and link routes.
    """
    router = APIRouter(tags=['sharing'])

    @router.post('/api/v1/documents/{document_id}/share', status_code=201)
    async def create_share(
        document_id: str,
        body: ShareRequest,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        """Create or regenerate the link. Returns the raw token once."""
        password = None
        if body.share_type == 'password':
            if not body.password:
                return _bad_request(
                    'invalid_request', 'A password is required for password links.',
                )
            password = body.password

        expires_in = None
        if body.link_expiry:
            try:
                expires_in = parse_link_expiry(body.link_expiry)
            except ValueError as exc:
                return _bad_request('invalid_expiry', str(exc))

        try:
            result = await service.share_document(
                document_id,
                identity.as_requester(),
                password=password,
                expires_in=expires_in,
                allow_download=body.allow_download,
                allow_comments=body.allow_comments,
                notify_on_access=body.notify_on_access,
                max_accesses=body.max_accesses,
            )
        except ShareAccessError as exc:
            return share_error_response(exc)

        settings = result.document.share_settings
        return {
            'document_id': result.document.id,
            'token': result.token,
            'share_url': result.share_url,
            'share_type': body.share_type,
            'expires_at': (
                settings.expires_at.isoformat() if settings.expires_at else None
            ),
            'max_accesses': settings.max_accesses,
            'allow_download': settings.allow_download,
            'allow_comments': settings.allow_comments,
            'notify_on_access': settings.notify_on_access,
        }

    @router.delete('/api/v1/documents/{document_id}/share')
    async def disable_share(
        document_id: str,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        try:
            doc = await service.disable_link(document_id, identity.as_requester())
        except ShareAccessError as exc:
            return share_error_response(exc)
        return {'document_id': doc.id, 'is_public': doc.is_public}

    @router.post('/api/v1/documents/{document_id}/grants', status_code=201)
    async def create_grant(
        document_id: str,
        body: GrantRequest,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        """Grant a user or email access; issues a link when none is usable."""
        link_expires_in = None
        if body.link_expiry:
            try:
                link_expires_in = parse_link_expiry(body.link_expiry)
            except ValueError as exc:
                return _bad_request('invalid_expiry', str(exc))

        permissions = PermissionSet(
            can_view=body.can_view,
            can_comment=body.can_comment,
            can_download=body.can_download,
        )
        try:
            result = await service.grant_access(
                document_id,
                identity.as_requester(),
                body.principal,
                permissions,
                expires_at=body.expires_at,
                fresh_link=body.fresh_link,
                link_expires_in=link_expires_in,
                password=body.password,
                notify=body.notify,
            )
        except ValueError as exc:
            return _bad_request('invalid_principal', str(exc))
        except ShareAccessError as exc:
            return share_error_response(exc)

        entry = result.grant
        return {
            'document_id': result.document.id,
            'principal': entry.principal,
            'permissions': entry.permissions.to_dict(),
            'expires_at': entry.expires_at.isoformat() if entry.expires_at else None,
            'token': result.token,
            'share_url': result.share_url,
            'password_protected': isinstance(result.document.share_mode, PasswordLink),
        }

    @router.delete('/api/v1/documents/{document_id}/grants/{principal}')
    async def revoke_grant(
        document_id: str,
        principal: str,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        """Revoke a grant. Idempotent."""
        try:
            doc = await service.revoke_access(
                document_id, identity.as_requester(), principal,
            )
        except ShareAccessError as exc:
            return share_error_response(exc)
        return {
            'document_id': doc.id,
            'principal': normalize_principal(principal),
            'revoked': True,
        }

    @router.get('/api/v1/documents/{document_id}/permissions')
    async def get_permissions(
        document_id: str,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        try:
            perms = await service.resolve_for_user(
                document_id, identity.as_requester(),
            )
        except ShareAccessError as exc:
            return share_error_response(exc)
        return {'document_id': document_id, 'permissions': perms.to_dict()}

    @router.get('/api/v1/shared/{token}')
    async def open_shared(
        token: str,
        request: Request,
        identity: RequesterIdentity = Depends(get_optional_identity),
    ):
        """Redeem a public link. Password links answer 401 password_required."""
        try:
            result = await service.open_link(
                token, identity, **_visitor_info(request),
            )
        except ShareAccessError as exc:
            return share_error_response(exc)
        return _redemption_body(result)

    @router.post('/api/v1/shared/{token}/verify')
    async def verify_shared_password(
        token: str,
        body: VerifyRequest,
        request: Request,
        identity: RequesterIdentity = Depends(get_optional_identity),
    ):
        try:
            result = await service.verify_password(
                token,
                body.password,
                identity,
                email=body.email,
                **_visitor_info(request),
            )
        except ShareAccessError as exc:
            return share_error_response(exc)
        return _redemption_body(result)

    @router.get('/api/v1/shared/{token}/authorize/{action}')
    async def authorize_shared_action(
        token: str,
        action: Action,
        identity: RequesterIdentity = Depends(get_optional_identity),
        share_session: str | None = Header(default=None, alias=SESSION_HEADER),
    ):
        try:
            doc, perms = await service.authorize_session(
                token, action, identity, share_session,
            )
        except ShareAccessError as exc:
            return share_error_response(exc)
        return {
            'document_id': doc.id,
            'action': action.value,
            'allowed': True,
            'permissions': perms.to_dict(),
        }

    @router.get('/api/v1/shared/{token}/download')
    async def download_shared(
        token: str,
        identity: RequesterIdentity = Depends(get_optional_identity),
        share_session: str | None = Header(default=None, alias=SESSION_HEADER),
    ):
        try:
            doc, chunks = await service.open_download(token, identity, share_session)
        except ShareAccessError as exc:
            return share_error_response(exc)
        filename = (doc.name or doc.id).replace('"', '')
        return StreamingResponse(
            chunks,
            media_type='application/pdf',
            headers={'Content-Disposition': f'attachment; filename="{filename}"'},
        )

    return router
