"""Document record round-trips and integrity faults."""

from __future__ import annotations

from datetime import timedelta

import pytest

from docshare.app.sharing.errors import ShareIntegrityError
from docshare.app.sharing.grants import grant
from docshare.app.sharing.model import (
    FULL_ACCESS,
    NO_ACCESS,
    Document,
    Grant,
    GrantSource,
    LinkDisabled,
    PasswordLink,
    PermissionSet,
    PublicLink,
    RequesterIdentity,
)

from docshare_factories import NOW, make_document


def test_private_document_record():
    record = make_document().to_record()
    assert record['is_public'] is False
    assert record['share_token'] is None
    assert record['share_settings'] is None
    doc = Document.from_record(record)
    assert isinstance(doc.share_mode, LinkDisabled)


def test_password_mode_lives_in_settings_record():
    doc = make_document(
        mode=PasswordLink('$argon2id$v=19$stored'),
        expires_at=NOW + timedelta(days=7),
        max_accesses=3,
        shared_with=grant((), 'a@x.com', FULL_ACCESS, NOW, source=GrantSource.LINK),
    )
    record = doc.to_record()
    assert record['share_settings']['password_hash'] == '$argon2id$v=19$stored'

    restored = Document.from_record(record)
    assert restored == doc
    assert restored.requires_password


def test_public_mode_has_null_password_hash():
    record = make_document(mode=PublicLink()).to_record()
    assert record['share_settings']['password_hash'] is None
    assert isinstance(Document.from_record(record).share_mode, PublicLink)


def test_naive_timestamps_are_read_as_utc():
    record = make_document(mode=PublicLink()).to_record()
    record['share_settings']['created_at'] = '2026-03-01T12:00:00'
    doc = Document.from_record(record)
    assert doc.share_settings.created_at == NOW


def test_public_document_without_token_is_integrity_fault():
    record = make_document(mode=PublicLink()).to_record()
    record['share_token'] = None
    with pytest.raises(ShareIntegrityError) as exc_info:
        Document.from_record(record)
    assert exc_info.value.document_id == 'doc_1'


def test_non_string_password_hash_is_integrity_fault():
    record = make_document(mode=PublicLink()).to_record()
    record['share_settings']['password_hash'] = 12345
    with pytest.raises(ShareIntegrityError):
        Document.from_record(record)


def test_unparseable_timestamp_is_integrity_fault():
    record = make_document(mode=PublicLink()).to_record()
    record['share_settings']['created_at'] = 'not-a-date'
    with pytest.raises(ShareIntegrityError):
        Document.from_record(record)


def test_permission_set_algebra():
    view = PermissionSet(can_view=True)
    download = PermissionSet(can_download=True)
    assert view.union(download) == PermissionSet(True, False, True)
    assert view.intersect(download) == NO_ACCESS
    assert not NO_ACCESS
    assert FULL_ACCESS


def _grant_record(permissions):
    return {
        'principal': 'x@example.com',
        'shared_at': NOW.isoformat(),
        'permissions': permissions,
    }


@pytest.mark.parametrize('permissions', [{}, None])
def test_grant_without_permissions_grants_nothing(permissions):
    assert Grant.from_dict(_grant_record(permissions)).permissions == NO_ACCESS


def test_grant_missing_permission_keys_are_denied():
    restored = Grant.from_dict(_grant_record({'can_view': True}))
    assert restored.permissions == PermissionSet(True, False, False)


def test_identity_principals_normalise_email():
    identity = RequesterIdentity(user_id='User_1', email='Me@Example.COM')
    assert identity.principals() == {'User_1', 'me@example.com'}
    assert RequesterIdentity().is_anonymous
