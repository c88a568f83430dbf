"""Per-link password hashing (argon2id)."""

from __future__ import annotations

import pytest

from docshare.app.sharing.errors import ShareIntegrityError
from docshare.app.sharing.passwords import hash_password, verify_password


def test_round_trip_verifies():
    stored = hash_password('correct horse')
    assert verify_password('correct horse', stored) is True


def test_wrong_password_returns_false():
    stored = hash_password('correct horse')
    assert verify_password('battery staple', stored) is False


def test_hash_is_salted():
    assert hash_password('same') != hash_password('same')


def test_hash_is_argon2id():
    assert hash_password('pw').startswith('$argon2id$')


def test_empty_password_rejected_at_hash_time():
    with pytest.raises(ValueError):
        hash_password('')


@pytest.mark.parametrize('stored', ['not-a-hash', '$argon2id$v=19$garbage', ''])
def test_malformed_hash_is_integrity_error(stored):
    with pytest.raises(ShareIntegrityError) as exc_info:
        verify_password('anything', stored, document_id='doc_9')
    assert exc_info.value.document_id == 'doc_9'
