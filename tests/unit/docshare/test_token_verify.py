"""Bearer-token verification for owner and visitor identities."""

from __future__ import annotations

import time

import jwt
import pytest

from docshare.app.security.token_verify import (
    StaticKeyProvider,
    TokenVerificationError,
    TokenVerifier,
    create_token_verifier,
)

SECRET = 'verifier-test-secret-with-32-plus-chars'


@pytest.fixture
def verifier():
    return TokenVerifier(StaticKeyProvider(SECRET), algorithms=['HS256'])


def _token(**overrides):
    claims = {
        'sub': 'user_1',
        'email': ' User@Example.com ',
        'aud': 'authenticated',
        'exp': int(time.time()) + 60,
    }
    claims.update(overrides)
    claims = {k: v for k, v in claims.items() if v is not None}
    return jwt.encode(claims, SECRET, algorithm='HS256')


def test_valid_token(verifier):
    identity = verifier.verify(_token())
    assert identity.user_id == 'user_1'
    assert identity.email == 'user@example.com'
    requester = identity.as_requester()
    assert requester.user_id == 'user_1'
    assert not requester.is_anonymous


@pytest.mark.parametrize(
    ('overrides', 'code'),
    [
        ({'exp': int(time.time()) - 10}, 'token_expired'),
        ({'aud': 'other'}, 'invalid_audience'),
        ({'sub': None}, 'invalid_token'),
    ],
)
def test_rejections(verifier, overrides, code):
    with pytest.raises(TokenVerificationError) as exc_info:
        verifier.verify(_token(**overrides))
    assert exc_info.value.code == code


def test_wrong_secret(verifier):
    forged = jwt.encode(
        {'sub': 'u', 'aud': 'authenticated', 'exp': int(time.time()) + 60},
        'another-secret-that-is-also-long-enough',
        algorithm='HS256',
    )
    with pytest.raises(TokenVerificationError):
        verifier.verify(forged)


def test_empty_token(verifier):
    with pytest.raises(TokenVerificationError) as exc_info:
        verifier.verify('  ')
    assert exc_info.value.code == 'empty_token'


def test_factory_requires_a_key_source():
    with pytest.raises(ValueError):
        create_token_verifier()
