"""Share orchestration: owner operations and link redemption.

Security invariants:
  - A redemption (open, or verified password unlock) is counted by the
    repository's atomic ``redeem`` primitive, never by fetch-increment-save.
  - Owner and grant holders never consume link redemptions.
  - A password attempt is charged before the slow hash runs.
  - The raw share token only leaves this module in ``ShareLinkResult`` /
    ``GrantResult``; logs and audit events carry the redacted hash prefix.
"""

from __future__ import annotations

import asyncio
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable, Iterator

from ..observability.logging import get_logger
from ..observability.metrics import INTEGRITY_FAULTS_TOTAL, record_decision
from .audit import (
    SHARE_CREATED,
    SHARE_DENIED,
    SHARE_DISABLED,
    SHARE_GRANTED,
    SHARE_PASSWORD_FAILED,
    SHARE_REDEEMED,
    SHARE_REVOKED,
    ShareAuditEmitter,
    ShareAuditEvent,
    redact_token,
)
from .errors import (
    DocumentNotFound,
    InvalidSharePassword,
    NotAuthorizedError,
    NotPasswordProtected,
    SessionRequired,
    ShareAccessError,
    ShareConflict,
    ShareIntegrityError,
)
from .grants import grant, matching_grants, revoke
from .lifecycle import VIEW_DEDUP_WINDOW, LinkState, initial_settings, link_state
from .model import (
    AccessRecord,
    Action,
    Document,
    Grant,
    GrantSource,
    LinkDisabled,
    PasswordLink,
    PermissionSet,
    PublicLink,
    RequesterIdentity,
    ShareMode,
    ShareSettings,
    Visitor,
    normalize_principal,
    utcnow,
)
from .passwords import hash_password, verify_password
from .policy import LinkPresentation, authorize, is_owner, resolve
from .sessions import ShareSessionIssuer
from .tokens import IssuedToken, hash_token, issue_share_token

if TYPE_CHECKING:
    from ..protocols import (
        DocumentShareRepository,
        DocumentStorage,
        GrantNotifier,
        UserDirectory,
    )

logger = get_logger(__name__)

DEFAULT_MAX_RETRIES = 3


# ── Results ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ShareLinkResult:
    """A freshly issued link. ``token`` is shown to the owner once."""

    document: Document
    token: str = field(repr=False)
    share_url: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class GrantResult:
    document: Document
    grant: Grant
    token: str | None = field(default=None, repr=False)
    share_url: str | None = field(default=None, repr=False)


@dataclass(frozen=True, slots=True)
class Redemption:
    """Outcome of opening or unlocking a link.

    ``counted`` is False when owner or grant access made the link
    redemption unnecessary; no session is issued in that case.
    """

    document: Document
    permissions: PermissionSet
    counted: bool
    session_token: str | None = field(default=None, repr=False)
    remaining_accesses: int | None = None


# ── Service ──────────────────────────────────────────────────────────


class ShareService:
    """Coordinates policy, lifecycle and persistence for one deployment.

    Args:
        repo: Share repository (atomic primitives + CAS owner writes).
        audit: Audit emitter.
        sessions: Share-session issuer.
        users: Optional user directory, used to resolve a caller's email.
        notifier: Optional grant/access notifier.
        storage: Optional PDF storage for downloads.
        frontend_url: Base URL for share links.
        clock: Injectable UTC clock.
        max_retries: Attempts for owner writes that lose a CAS race.
    """

    def __init__(
        self,
        repo: DocumentShareRepository,
        *,
        audit: ShareAuditEmitter,
        sessions: ShareSessionIssuer,
        users: UserDirectory | None = None,
        notifier: GrantNotifier | None = None,
        storage: DocumentStorage | None = None,
        frontend_url: str = '',
        clock: Callable[[], datetime] = utcnow,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self._repo = repo
        self._audit = audit
        self._sessions = sessions
        self._users = users
        self._notifier = notifier
        self._storage = storage
        self._frontend_url = frontend_url.rstrip('/')
        self._clock = clock
        self._max_retries = max(1, max_retries)

    # ── Owner operations ─────────────────────────────────────────────

    async def share_document(
        self,
        document_id: str,
        actor: RequesterIdentity,
        *,
        password: str | None = None,
        expires_in: timedelta | None = None,
        allow_download: bool = True,
        allow_comments: bool = True,
        notify_on_access: bool = False,
        max_accesses: int | None = None,
    ) -> ShareLinkResult:
        """Create or regenerate the public link.

        Regenerating overwrites the stored hash, so the previous token and
        every session issued for it stop working immediately.
        """
        with _track('share'):
            mode = await self._share_mode(password)
            issued = issue_share_token()

            async def apply(doc: Document) -> Document:
                now = self._clock()
                settings = initial_settings(
                    now,
                    expires_at=now + expires_in if expires_in else None,
                    allow_download=allow_download,
                    allow_comments=allow_comments,
                    notify_on_access=notify_on_access,
                    max_accesses=max_accesses,
                )
                return await self._repo.save_share(
                    doc.id,
                    doc.revision,
                    share_token=issued.token_hash,
                    share_mode=mode,
                    share_settings=settings,
                    shared_with=doc.shared_with,
                )

            doc = await self._owner_write(document_id, actor, apply)

        logger.info(
            'share_link_created',
            document_id=doc.id,
            token_prefix=redact_token(issued.token_hash),
            password_protected=doc.requires_password,
        )
        await self._emit(SHARE_CREATED, doc.id, issued.token_hash, actor)
        return ShareLinkResult(
            document=doc,
            token=issued.raw,
            share_url=self.share_url(issued.raw),
        )

    async def disable_link(
        self,
        document_id: str,
        actor: RequesterIdentity,
    ) -> Document:
        """Turn the public link off. Grants are left untouched."""
        with _track('disable'):
            async def apply(doc: Document) -> Document:
                return await self._repo.save_share(
                    doc.id,
                    doc.revision,
                    share_token=None,
                    share_mode=LinkDisabled(),
                    share_settings=None,
                    shared_with=doc.shared_with,
                )

            doc = await self._owner_write(document_id, actor, apply)

        logger.info('share_link_disabled', document_id=doc.id)
        await self._emit(SHARE_DISABLED, doc.id, None, actor)
        return doc

    async def grant_access(
        self,
        document_id: str,
        actor: RequesterIdentity,
        principal: str,
        permissions: PermissionSet,
        *,
        expires_at: datetime | None = None,
        fresh_link: bool = False,
        link_expires_in: timedelta | None = None,
        password: str | None = None,
        notify: bool = True,
    ) -> GrantResult:
        """Grant ``principal`` access and make sure a usable link exists.

        The grant, and a new token when the current link is disabled,
        expired, exhausted or ``fresh_link`` is set, are persisted in a
        single conditional write. A ``password`` always issues a new
        password link. Link allow flags follow ``permissions``.
        The notifier runs only after that write succeeded.
        """
        key = normalize_principal(principal)
        if not key:
            raise ValueError('principal must not be empty')

        with _track('grant'):
            issued = issue_share_token()
            new_mode = await self._share_mode(password) if password else None
            fresh_link = fresh_link or new_mode is not None
            token: IssuedToken | None = None

            async def apply(doc: Document) -> Document:
                nonlocal token
                now = self._clock()
                shared_with = grant(
                    doc.shared_with, key, permissions, now, expires_at=expires_at,
                )
                if not fresh_link and not self._needs_new_link(doc, now):
                    token = None
                    return await self._repo.save_grants(
                        doc.id, doc.revision, shared_with,
                    )
                token = issued
                settings = initial_settings(
                    now,
                    expires_at=now + link_expires_in if link_expires_in else None,
                    allow_download=permissions.can_download,
                    allow_comments=permissions.can_comment,
                )
                return await self._repo.save_share(
                    doc.id,
                    doc.revision,
                    share_token=issued.token_hash,
                    share_mode=new_mode or PublicLink(),
                    share_settings=settings,
                    shared_with=shared_with,
                )

            doc = await self._owner_write(document_id, actor, apply)

        entry = next(g for g in doc.shared_with if g.principal == key)
        logger.info(
            'share_granted',
            document_id=doc.id,
            principal=key,
            link_issued=token is not None,
        )
        await self._emit(
            SHARE_GRANTED, doc.id, token.token_hash if token else None, actor,
            principal=key,
        )

        share_url = self.share_url(token.raw) if token else None
        if notify:
            await self._notify_grant(doc, key, share_url, actor)
        return GrantResult(
            document=doc,
            grant=entry,
            token=token.raw if token else None,
            share_url=share_url,
        )

    async def revoke_access(
        self,
        document_id: str,
        actor: RequesterIdentity,
        principal: str,
    ) -> Document:
        """Remove ``principal``'s grant. Revoking an absent grant is a no-op."""
        key = normalize_principal(principal)
        with _track('revoke'):
            async def apply(doc: Document) -> Document:
                remaining = revoke(doc.shared_with, key)
                if len(remaining) == len(doc.shared_with):
                    return doc
                return await self._repo.save_grants(doc.id, doc.revision, remaining)

            doc = await self._owner_write(document_id, actor, apply)

        logger.info('share_revoked', document_id=doc.id, principal=key)
        await self._emit(SHARE_REVOKED, doc.id, None, actor, principal=key)
        return doc

    async def resolve_for_user(
        self,
        document_id: str,
        identity: RequesterIdentity,
    ) -> PermissionSet:
        """Owner/grant permissions of ``identity`` (no link involved)."""
        with _track('resolve'):
            doc = await self._repo.get(document_id)
            if doc is None:
                raise DocumentNotFound()
            identity = await self._with_email(identity)
            perms = resolve(doc, identity, now=self._clock())
            if not perms:
                if identity.is_anonymous:
                    raise DocumentNotFound()
                raise NotAuthorizedError()
            return perms

    # ── Link redemption ──────────────────────────────────────────────

    async def open_link(
        self,
        raw_token: str,
        identity: RequesterIdentity,
        *,
        user_agent: str = '',
        ip: str = '',
    ) -> Redemption:
        """Redeem a public (non-password) link.

        Raises:
            DocumentNotFound: Unknown token.
            PasswordRequired: The link needs ``verify_password`` instead.
            ShareLinkExpired / ShareLinkExhausted / ShareLinkThrottled:
                Lifecycle guard refused the redemption.
        """
        token_hash = hash_token(raw_token)
        doc: Document | None = None
        try:
            with _track('redeem'):
                doc = await self._by_token(token_hash)
                identity = await self._with_email(identity)
                now = self._clock()

                direct = resolve(doc, identity, now=now)
                if direct.allows(Action.VIEW):
                    return Redemption(document=doc, permissions=direct, counted=False)

                link = LinkPresentation(token_hash=token_hash)
                perms = authorize(doc, identity, Action.VIEW, link=link, now=now)
                return await self._redeem(
                    doc, identity, token_hash, perms, now,
                    visitor=Visitor(now, user_agent, ip),
                    password_verified=False,
                )
        except ShareAccessError as exc:
            await self._emit_denied(exc, doc, token_hash, identity)
            raise

    async def verify_password(
        self,
        raw_token: str,
        password: str,
        identity: RequesterIdentity,
        *,
        email: str | None = None,
        user_agent: str = '',
        ip: str = '',
    ) -> Redemption:
        """Unlock a password link; success counts as one redemption.

        ``email`` is self-asserted: it is written to the access history and
        never used to resolve grants.

        Raises:
            DocumentNotFound: Unknown token.
            NotPasswordProtected: The link has no password.
            ShareLinkThrottled: Attempt budget used up (checked before hashing).
            InvalidSharePassword: Wrong password (the attempt stays charged).
        """
        token_hash = hash_token(raw_token)
        doc: Document | None = None
        try:
            with _track('verify'):
                doc = await self._by_token(token_hash)
                mode = doc.share_mode
                if not isinstance(mode, PasswordLink):
                    raise NotPasswordProtected()
                identity = await self._with_email(identity)
                now = self._clock()

                await self._repo.claim_password_attempt(doc.id, token_hash, now)
                ok = await asyncio.to_thread(
                    verify_password, password, mode.password_hash, document_id=doc.id,
                )
                if not ok:
                    raise InvalidSharePassword()

                # The attempt just charged may sit at the ceiling; redeem settles
                # it and re-checks exhaustion atomically.
                link = LinkPresentation(
                    token_hash, password_verified=True, continuation=True,
                )
                perms = authorize(doc, identity, Action.VIEW, link=link, now=now)
                return await self._redeem(
                    doc, identity, token_hash, perms, now,
                    visitor=Visitor(now, user_agent, ip),
                    password_verified=True,
                    visitor_email=email,
                )
        except ShareAccessError as exc:
            await self._emit_denied(exc, doc, token_hash, identity)
            raise

    async def authorize_session(
        self,
        raw_token: str,
        action: Action,
        identity: RequesterIdentity,
        session_token: str | None,
    ) -> tuple[Document, PermissionSet]:
        """Check ``action`` for a request that continues a redeemed session.

        Continuations re-check expiry only and are not counted. Without a
        valid session the caller needs owner or grant access.
        """
        token_hash = hash_token(raw_token)
        with _track(f'authorize_{action.value}'):
            doc = await self._by_token(token_hash)
            identity = await self._with_email(identity)
            now = self._clock()

            claims = self._sessions.verify(
                session_token, document_id=doc.id, token_hash=token_hash,
            )
            if claims is None:
                direct = resolve(doc, identity, now=now)
                if direct.allows(action):
                    return doc, direct
                raise SessionRequired()

            link = LinkPresentation(
                token_hash,
                password_verified=claims.password_verified,
                continuation=True,
            )
            return doc, authorize(doc, identity, action, link=link, now=now)

    async def open_download(
        self,
        raw_token: str,
        identity: RequesterIdentity,
        session_token: str | None,
    ) -> tuple[Document, AsyncIterator[bytes]]:
        if self._storage is None:
            raise RuntimeError('document storage is not configured')
        doc, _ = await self.authorize_session(
            raw_token, Action.DOWNLOAD, identity, session_token,
        )
        return doc, self._storage.read(doc.storage_handle)

    def share_url(self, raw_token: str) -> str:
        return f'{self._frontend_url}/shared/{raw_token}'

    # ── Internals ────────────────────────────────────────────────────

    async def _share_mode(self, password: str | None) -> ShareMode:
        if password is None:
            return PublicLink()
        return PasswordLink(await asyncio.to_thread(hash_password, password))

    @staticmethod
    def _needs_new_link(doc: Document, now: datetime) -> bool:
        if not doc.is_public or doc.share_settings is None:
            return True
        return link_state(doc.share_settings, now) in (
            LinkState.EXPIRED,
            LinkState.EXHAUSTED,
        )

    async def _owner_write(
        self,
        document_id: str,
        actor: RequesterIdentity,
        apply: Callable[[Document], Awaitable[Document]],
    ) -> Document:
        """Run ``apply`` against fresh state, retrying lost CAS races."""
        for attempt in range(1, self._max_retries + 1):
            doc = await self._repo.get(document_id)
            _require_owner(doc, actor)
            try:
                return await apply(doc)
            except ShareConflict:
                logger.info(
                    'share_write_conflict',
                    document_id=document_id,
                    attempt=attempt,
                )
        raise ShareConflict()

    async def _by_token(self, token_hash: str) -> Document:
        doc = await self._repo.get_by_token_hash(token_hash)
        if doc is None or not doc.is_public:
            raise DocumentNotFound()
        return doc

    async def _with_email(self, identity: RequesterIdentity) -> RequesterIdentity:
        if identity.email or not identity.user_id or self._users is None:
            return identity
        user = await self._users.get_user(identity.user_id)
        if user is None or not user.email:
            return identity
        return RequesterIdentity(identity.user_id, user.email)

    async def _redeem(
        self,
        doc: Document,
        identity: RequesterIdentity,
        token_hash: str,
        perms: PermissionSet,
        now: datetime,
        *,
        visitor: Visitor,
        password_verified: bool,
        visitor_email: str | None = None,
    ) -> Redemption:
        # A typed-in email only labels the history entry; it grants nothing.
        history_email = identity.email or (visitor_email or '').strip() or None
        session_id = uuid.uuid4().hex
        entry = AccessRecord(now, email=history_email, access_token=session_id)
        settings = await self._repo.redeem(
            doc.id,
            token_hash,
            entry,
            now,
            visitor=visitor,
            password_verified=password_verified,
        )
        await self._repo.record_view(doc.id, now, VIEW_DEDUP_WINDOW)

        logger.info(
            'share_redeemed',
            document_id=doc.id,
            token_prefix=redact_token(token_hash),
            access_count=settings.access_count,
            password_verified=password_verified,
        )
        await self._emit(SHARE_REDEEMED, doc.id, token_hash, identity)
        if identity.user_id:
            await self._remember_link_grant(doc, identity, settings, now)
        if settings.notify_on_access:
            await self._notify_access(doc, history_email, now)

        session = self._sessions.issue(
            document_id=doc.id,
            token_hash=token_hash,
            session_id=session_id,
            password_verified=password_verified,
            now=now,
            not_after=settings.expires_at,
        )
        return Redemption(
            document=doc,
            permissions=perms,
            counted=True,
            session_token=session,
            remaining_accesses=settings.remaining_accesses,
        )

    async def _remember_link_grant(
        self,
        doc: Document,
        identity: RequesterIdentity,
        settings: ShareSettings,
        now: datetime,
    ) -> None:
        """Record a link-derived grant so later visits are not counted."""
        if matching_grants(doc.shared_with, identity, now):
            return
        shared_with = grant(
            doc.shared_with, identity.user_id, settings.link_permissions, now,
            source=GrantSource.LINK,
        )
        try:
            await self._repo.save_grants(doc.id, doc.revision, shared_with)
        except ShareConflict:
            logger.info('link_grant_skipped', document_id=doc.id, reason='conflict')

    async def _notify_grant(
        self,
        doc: Document,
        principal: str,
        share_url: str | None,
        actor: RequesterIdentity,
    ) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.notify_grant(
                document=doc,
                principal=principal,
                share_url=share_url,
                granted_by=actor.user_id or '',
            )
        except Exception:
            logger.warning(
                'grant_notification_failed',
                document_id=doc.id,
                principal=principal,
                exc_info=True,
            )

    async def _notify_access(
        self,
        doc: Document,
        email: str | None,
        accessed_at: datetime,
    ) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.notify_access(
                document=doc, email=email, accessed_at=accessed_at,
            )
        except Exception:
            logger.warning(
                'access_notification_failed', document_id=doc.id, exc_info=True,
            )

    async def _emit(
        self,
        event_type: str,
        document_id: str,
        token_hash: str | None,
        actor: RequesterIdentity,
        *,
        principal: str = '',
        detail: str = '',
    ) -> None:
        await self._audit.emit(
            ShareAuditEvent(
                event_type=event_type,
                document_id=document_id,
                token_prefix=redact_token(token_hash),
                actor_user_id=actor.user_id or '',
                principal=principal,
                detail=detail,
            )
        )

    async def _emit_denied(
        self,
        exc: ShareAccessError,
        doc: Document | None,
        token_hash: str,
        identity: RequesterIdentity,
    ) -> None:
        event_type = (
            SHARE_PASSWORD_FAILED
            if isinstance(exc, InvalidSharePassword)
            else SHARE_DENIED
        )
        logger.info(
            'share_access_denied',
            document_id=doc.id if doc else None,
            token_prefix=redact_token(token_hash),
            code=exc.code,
        )
        await self._emit(
            event_type,
            doc.id if doc else '',
            token_hash,
            identity,
            detail=exc.code,
        )


def _require_owner(doc: Document | None, actor: RequesterIdentity) -> None:
    if doc is None:
        raise DocumentNotFound()
    if is_owner(doc, actor):
        return
    if actor.is_anonymous:
        raise DocumentNotFound()
    raise NotAuthorizedError()


@contextmanager
def _track(operation: str) -> Iterator[None]:
    """Count the decision outcome and log integrity faults."""
    try:
        yield
    except ShareAccessError as exc:
        record_decision(operation, exc.code)
        raise
    except ShareIntegrityError as exc:
        record_decision(operation, 'integrity_error')
        INTEGRITY_FAULTS_TOTAL.inc()
        logger.error(
            'share_integrity_fault',
            operation=operation,
            document_id=exc.document_id,
            reason=exc.reason,
        )
        raise
    record_decision(operation, 'allowed')
