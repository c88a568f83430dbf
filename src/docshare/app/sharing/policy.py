"""Access policy evaluation.

Precedence: owner > explicit grant > public link > none. The owner short
circuits everything (no lifecycle or password checks). Grant and link
permissions are unioned, so a requester keeps access through one path when
the other fails.

Grants recorded from a link redemption (``GrantSource.LINK``) never exceed
the link's allow flags and lapse with the link: once it is disabled,
expired or exhausted they confer nothing. Owner-issued grants are not
subject to either.

Evaluation is read-only. Callers that go on to redeem a link must do so
through the repository's atomic primitives.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from datetime import datetime

from .errors import (
    DocumentNotFound,
    NotAuthorizedError,
    PasswordRequired,
    ShareAccessError,
)
from .grants import matching_grants
from .lifecycle import LinkState, check_active, check_not_expired, link_state
from .model import (
    FULL_ACCESS,
    NO_ACCESS,
    Action,
    Document,
    GrantSource,
    PermissionSet,
    RequesterIdentity,
    utcnow,
)


@dataclass(frozen=True, slots=True)
class LinkPresentation:
    """A share token presented with the request.

    Attributes:
        token_hash: ``hash_token`` of the presented raw token.
        password_verified: The password was verified for this link.
        continuation: The request belongs to an already redeemed session;
            only expiry is re-checked.
    """

    token_hash: str
    password_verified: bool = False
    continuation: bool = False


def is_owner(document: Document, identity: RequesterIdentity) -> bool:
    return bool(identity.user_id) and identity.user_id == document.owner_id


def token_matches(document: Document, token_hash: str) -> bool:
    if not document.share_token:
        return False
    return hmac.compare_digest(document.share_token, token_hash)


def _live_link_ceiling(document: Document, now: datetime) -> PermissionSet:
    settings = document.share_settings
    if not document.is_public or settings is None:
        return NO_ACCESS
    if link_state(settings, now) in (LinkState.EXPIRED, LinkState.EXHAUSTED):
        return NO_ACCESS
    return settings.link_permissions


def _grant_permissions(
    document: Document,
    identity: RequesterIdentity,
    now: datetime,
) -> PermissionSet:
    perms = NO_ACCESS
    for g in matching_grants(document.shared_with, identity, now):
        granted = g.permissions
        if g.source is GrantSource.LINK:
            granted = granted.intersect(_live_link_ceiling(document, now))
        perms = perms.union(granted)
    return perms


def _link_permissions(
    document: Document,
    link: LinkPresentation | None,
    now: datetime,
) -> PermissionSet:
    """Permissions from the public link; raises the lifecycle error."""
    if link is None or not document.is_public:
        return NO_ACCESS
    if not token_matches(document, link.token_hash):
        return NO_ACCESS

    settings = document.share_settings
    if link.continuation:
        check_not_expired(settings, now)
    else:
        check_active(settings, now)
    if document.requires_password and not link.password_verified:
        raise PasswordRequired()
    return settings.link_permissions


def _evaluate(
    document: Document,
    identity: RequesterIdentity,
    link: LinkPresentation | None,
    now: datetime,
) -> tuple[PermissionSet, ShareAccessError | None]:
    if is_owner(document, identity):
        return FULL_ACCESS, None

    perms = _grant_permissions(document, identity, now)
    link_error = None
    try:
        perms = perms.union(_link_permissions(document, link, now))
    except ShareAccessError as exc:
        link_error = exc
    return perms, link_error


def resolve(
    document: Document,
    identity: RequesterIdentity,
    link: LinkPresentation | None = None,
    now: datetime | None = None,
) -> PermissionSet:
    """Resolve what ``identity`` may do with ``document``."""
    perms, _ = _evaluate(document, identity, link, now or utcnow())
    return perms


def authorize(
    document: Document | None,
    identity: RequesterIdentity,
    action: Action,
    link: LinkPresentation | None = None,
    now: datetime | None = None,
) -> PermissionSet:
    """Resolve permissions and require ``action``.

    Raises:
        DocumentNotFound: The document is missing, or an anonymous caller
            has no access at all (the two look identical).
        NotAuthorizedError: The caller is authenticated, or already holds
            some access, but not ``action``.
        ShareAccessError: The presented link matched but failed a lifecycle
            or password check and nothing else grants access.
    """
    if document is None:
        raise DocumentNotFound()

    perms, link_error = _evaluate(document, identity, link, now or utcnow())
    if perms.allows(action):
        return perms
    if link_error is not None and not perms:
        raise link_error
    if perms or not identity.is_anonymous:
        raise NotAuthorizedError()
    raise DocumentNotFound()
