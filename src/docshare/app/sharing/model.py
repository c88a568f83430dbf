"""Share domain model embedded in the document record.

Security invariant:
  ``Document.share_token`` only ever holds the SHA-256 hash of the share
  secret. The raw secret is handed to the owner once, at creation time.

The persisted layout keeps ``share_settings`` and ``shared_with`` as JSON
embedded in the document row; ``to_record`` / ``from_record`` convert between
that layout and the frozen dataclasses below.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from .errors import ShareIntegrityError

# ── Constants ─────────────────────────────────────────────────────────

DEFAULT_MAX_ACCESS_ATTEMPTS = 5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Any) -> datetime | None:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── Permissions ───────────────────────────────────────────────────────


class Action(str, Enum):
    VIEW = 'view'
    COMMENT = 'comment'
    DOWNLOAD = 'download'


@dataclass(frozen=True, slots=True)
class PermissionSet:
    """What a requester may do with a document."""

    can_view: bool = False
    can_comment: bool = False
    can_download: bool = False

    def union(self, other: PermissionSet) -> PermissionSet:
        return PermissionSet(
            can_view=self.can_view or other.can_view,
            can_comment=self.can_comment or other.can_comment,
            can_download=self.can_download or other.can_download,
        )

    def intersect(self, other: PermissionSet) -> PermissionSet:
        return PermissionSet(
            can_view=self.can_view and other.can_view,
            can_comment=self.can_comment and other.can_comment,
            can_download=self.can_download and other.can_download,
        )

    def allows(self, action: Action) -> bool:
        if action is Action.VIEW:
            return self.can_view
        if action is Action.COMMENT:
            return self.can_comment
        return self.can_download

    def __bool__(self) -> bool:
        return self.can_view or self.can_comment or self.can_download

    def to_dict(self) -> dict[str, bool]:
        return {
            'can_view': self.can_view,
            'can_comment': self.can_comment,
            'can_download': self.can_download,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PermissionSet:
        data = data or {}
        return cls(
            can_view=bool(data.get('can_view', False)),
            can_comment=bool(data.get('can_comment', False)),
            can_download=bool(data.get('can_download', False)),
        )


FULL_ACCESS = PermissionSet(True, True, True)
NO_ACCESS = PermissionSet(False, False, False)


# ── Identity ──────────────────────────────────────────────────────────


def normalize_principal(principal: str) -> str:
    """Lower-case emails; user ids are kept verbatim."""
    principal = principal.strip()
    if '@' in principal:
        return principal.lower()
    return principal


@dataclass(frozen=True, slots=True)
class RequesterIdentity:
    """Who is asking. Both fields empty means an anonymous guest."""

    user_id: str | None = None
    email: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return not self.user_id and not self.email

    def principals(self) -> set[str]:
        keys = set()
        if self.user_id:
            keys.add(normalize_principal(self.user_id))
        if self.email:
            keys.add(normalize_principal(self.email))
        return keys


ANONYMOUS = RequesterIdentity()


# ── Share mode ────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class LinkDisabled:
    """No public link; only the owner and explicit grants have access."""


@dataclass(frozen=True, slots=True)
class PublicLink:
    """Anyone holding the token may redeem it."""


@dataclass(frozen=True, slots=True)
class PasswordLink:
    """Token holders must also present the password."""

    password_hash: str


ShareMode = Union[LinkDisabled, PublicLink, PasswordLink]


# ── Share settings ────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class AccessRecord:
    timestamp: datetime
    email: str | None = None
    access_token: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            'email': self.email,
            'timestamp': _ts(self.timestamp),
            'access_token': self.access_token,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccessRecord:
        return cls(
            timestamp=_parse_ts(data['timestamp']),
            email=data.get('email'),
            access_token=data.get('access_token'),
        )


@dataclass(frozen=True, slots=True)
class Visitor:
    timestamp: datetime
    user_agent: str = ''
    ip: str = ''

    def to_dict(self) -> dict[str, Any]:
        return {
            'timestamp': _ts(self.timestamp),
            'user_agent': self.user_agent,
            'ip': self.ip,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Visitor:
        return cls(
            timestamp=_parse_ts(data['timestamp']),
            user_agent=data.get('user_agent') or '',
            ip=data.get('ip') or '',
        )


@dataclass(frozen=True, slots=True)
class ShareSettings:
    """Lifecycle state of the document's public link.

    ``max_access_attempts``/``access_attempts``/``last_access_attempt`` only
    govern password throttling. ``max_accesses``/``access_count`` govern
    total redemptions; ``max_accesses=None`` means unlimited.
    """

    created_at: datetime
    expires_at: datetime | None = None
    allow_download: bool = True
    allow_comments: bool = True
    notify_on_access: bool = False
    max_access_attempts: int = DEFAULT_MAX_ACCESS_ATTEMPTS
    access_attempts: int = 0
    last_access_attempt: datetime | None = None
    max_accesses: int | None = None
    access_count: int = 0
    last_accessed: datetime | None = None
    access_history: tuple[AccessRecord, ...] = ()
    visitors: tuple[Visitor, ...] = ()

    @property
    def link_permissions(self) -> PermissionSet:
        return PermissionSet(
            can_view=True,
            can_comment=self.allow_comments,
            can_download=self.allow_download,
        )

    @property
    def remaining_accesses(self) -> int | None:
        if self.max_accesses is None:
            return None
        return max(self.max_accesses - self.access_count, 0)

    def to_dict(self, mode: ShareMode) -> dict[str, Any]:
        return {
            'password_hash': (
                mode.password_hash if isinstance(mode, PasswordLink) else None
            ),
            'created_at': _ts(self.created_at),
            'expires_at': _ts(self.expires_at),
            'allow_download': self.allow_download,
            'allow_comments': self.allow_comments,
            'notify_on_access': self.notify_on_access,
            'max_access_attempts': self.max_access_attempts,
            'access_attempts': self.access_attempts,
            'last_access_attempt': _ts(self.last_access_attempt),
            'max_accesses': self.max_accesses,
            'access_count': self.access_count,
            'last_accessed': _ts(self.last_accessed),
            'access_history': [r.to_dict() for r in self.access_history],
            'visitors': [v.to_dict() for v in self.visitors],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ShareSettings:
        return cls(
            created_at=_parse_ts(data['created_at']),
            expires_at=_parse_ts(data.get('expires_at')),
            allow_download=bool(data.get('allow_download', True)),
            allow_comments=bool(data.get('allow_comments', True)),
            notify_on_access=bool(data.get('notify_on_access', False)),
            max_access_attempts=int(
                data.get('max_access_attempts') or DEFAULT_MAX_ACCESS_ATTEMPTS
            ),
            access_attempts=int(data.get('access_attempts') or 0),
            last_access_attempt=_parse_ts(data.get('last_access_attempt')),
            max_accesses=(
                int(data['max_accesses'])
                if data.get('max_accesses') is not None
                else None
            ),
            access_count=int(data.get('access_count') or 0),
            last_accessed=_parse_ts(data.get('last_accessed')),
            access_history=tuple(
                AccessRecord.from_dict(r) for r in data.get('access_history') or ()
            ),
            visitors=tuple(Visitor.from_dict(v) for v in data.get('visitors') or ()),
        )


# ── Grants ────────────────────────────────────────────────────────────


class GrantSource(str, Enum):
    OWNER = 'owner'
    LINK = 'link'


@dataclass(frozen=True, slots=True)
class Grant:
    """Explicit permission for one principal (user id or email)."""

    principal: str
    permissions: PermissionSet
    shared_at: datetime
    expires_at: datetime | None = None
    source: GrantSource = GrantSource.OWNER

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            'principal': self.principal,
            'permissions': self.permissions.to_dict(),
            'shared_at': _ts(self.shared_at),
            'expires_at': _ts(self.expires_at),
            'source': self.source.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Grant:
        return cls(
            principal=normalize_principal(data['principal']),
            permissions=PermissionSet.from_dict(data.get('permissions')),
            shared_at=_parse_ts(data['shared_at']),
            expires_at=_parse_ts(data.get('expires_at')),
            source=GrantSource(data.get('source') or GrantSource.OWNER.value),
        )


# ── Document ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Document:
    """The owning aggregate for all share state."""

    id: str
    owner_id: str
    name: str = ''
    storage_handle: str = ''
    share_token: str | None = None
    share_mode: ShareMode = field(default_factory=LinkDisabled)
    share_settings: ShareSettings | None = None
    shared_with: tuple[Grant, ...] = ()
    revision: int = 0
    view_count: int = 0
    last_viewed: datetime | None = None

    @property
    def is_public(self) -> bool:
        return not isinstance(self.share_mode, LinkDisabled)

    @property
    def requires_password(self) -> bool:
        return isinstance(self.share_mode, PasswordLink)

    def with_share(
        self,
        *,
        share_token: str | None,
        share_mode: ShareMode,
        share_settings: ShareSettings | None,
        shared_with: tuple[Grant, ...] | None = None,
    ) -> Document:
        return replace(
            self,
            share_token=share_token,
            share_mode=share_mode,
            share_settings=share_settings,
            shared_with=self.shared_with if shared_with is None else shared_with,
        )

    def to_record(self) -> dict[str, Any]:
        mode = self.share_mode
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'name': self.name,
            'storage_handle': self.storage_handle,
            'is_public': self.is_public,
            'share_token': self.share_token,
            'share_settings': (
                self.share_settings.to_dict(mode)
                if self.share_settings is not None
                else None
            ),
            'shared_with': [g.to_dict() for g in self.shared_with],
            'revision': self.revision,
            'view_count': self.view_count,
            'last_viewed': _ts(self.last_viewed),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Document:
        """Rebuild a document from its persisted row.

        Raises:
            ShareIntegrityError: A public document is missing its token or
                lifecycle fields, or a stored field cannot be parsed.
        """
        doc_id = str(record.get('id'))
        try:
            owner_id = str(record['owner_id'])
            raw_settings = record.get('share_settings')
            settings = (
                ShareSettings.from_dict(raw_settings) if raw_settings else None
            )
            shared_with = tuple(
                Grant.from_dict(g) for g in record.get('shared_with') or ()
            )
            last_viewed = _parse_ts(record.get('last_viewed'))
        except (KeyError, TypeError, ValueError) as exc:
            raise ShareIntegrityError(doc_id, f'unparseable share state: {exc}') from exc

        mode: ShareMode = LinkDisabled()
        if record.get('is_public'):
            if not record.get('share_token') or settings is None:
                raise ShareIntegrityError(
                    doc_id, 'public document without share token or settings',
                )
            password_hash = raw_settings.get('password_hash')
            if password_hash is None:
                mode = PublicLink()
            elif isinstance(password_hash, str) and password_hash:
                mode = PasswordLink(password_hash)
            else:
                raise ShareIntegrityError(doc_id, 'password hash is not a string')

        return cls(
            id=doc_id,
            owner_id=owner_id,
            name=record.get('name') or '',
            storage_handle=record.get('storage_handle') or '',
            share_token=record.get('share_token'),
            share_mode=mode,
            share_settings=settings,
            shared_with=shared_with,
            revision=int(record.get('revision') or 0),
            view_count=int(record.get('view_count') or 0),
            last_viewed=last_viewed,
        )
