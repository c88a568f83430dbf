"""Grant registry: explicit per-user / per-email permissions.

Grants live in ``Document.shared_with`` and are independent of the public
link. ``grant`` is an idempotent upsert keyed by the normalised principal:
re-granting replaces the entry in place and never duplicates it.
"""

from __future__ import annotations

from datetime import datetime

from .model import (
    Grant,
    GrantSource,
    PermissionSet,
    RequesterIdentity,
    normalize_principal,
)


def grant(
    shared_with: tuple[Grant, ...],
    principal: str,
    permissions: PermissionSet,
    now: datetime,
    *,
    expires_at: datetime | None = None,
    source: GrantSource = GrantSource.OWNER,
) -> tuple[Grant, ...]:
    key = normalize_principal(principal)
    if not key:
        raise ValueError('principal must not be empty')

    entry = Grant(
        principal=key,
        permissions=permissions,
        shared_at=now,
        expires_at=expires_at,
        source=source,
    )
    updated = []
    replaced = False
    for existing in shared_with:
        if existing.principal == key:
            if not replaced:
                updated.append(entry)
                replaced = True
            continue
        updated.append(existing)
    if not replaced:
        updated.append(entry)
    return tuple(updated)


def revoke(shared_with: tuple[Grant, ...], principal: str) -> tuple[Grant, ...]:
    key = normalize_principal(principal)
    return tuple(g for g in shared_with if g.principal != key)


def matching_grants(
    shared_with: tuple[Grant, ...],
    identity: RequesterIdentity,
    now: datetime,
) -> list[Grant]:
    """Live grants keyed by the identity's user id or email."""
    keys = identity.principals()
    if not keys:
        return []
    return [
        g for g in shared_with
        if g.principal in keys and not g.is_expired(now)
    ]
