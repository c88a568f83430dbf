"""Per-link password hashing with argon2id.

``verify_password`` returns False on a mismatch and never raises for one.
A structurally invalid stored hash is a data-integrity fault: the verifier
still burns one full argon2 verification against a decoy hash before raising,
so response timing does not reveal the shape of the stored value.
"""

from __future__ import annotations

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from .errors import ShareIntegrityError

# Roughly tens of milliseconds per verification on current hardware.
DEFAULT_TIME_COST = 3
DEFAULT_MEMORY_COST = 65536  # KiB
DEFAULT_PARALLELISM = 1

_hasher = PasswordHasher(
    time_cost=DEFAULT_TIME_COST,
    memory_cost=DEFAULT_MEMORY_COST,
    parallelism=DEFAULT_PARALLELISM,
    hash_len=32,
    salt_len=16,
)
_decoy_hash: str | None = None


def configure_password_hasher(
    *,
    time_cost: int = DEFAULT_TIME_COST,
    memory_cost: int = DEFAULT_MEMORY_COST,
    parallelism: int = DEFAULT_PARALLELISM,
) -> None:
    """Replace the module hasher (called once at app startup)."""
    global _hasher, _decoy_hash
    _hasher = PasswordHasher(
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=parallelism,
        hash_len=32,
        salt_len=16,
    )
    _decoy_hash = None


def _get_decoy_hash() -> str:
    global _decoy_hash
    if _decoy_hash is None:
        _decoy_hash = _hasher.hash('docshare-decoy-password')
    return _decoy_hash


def hash_password(plain: str) -> str:
    if not plain:
        raise ValueError('password must not be empty')
    return _hasher.hash(plain)


def verify_password(
    plain: str,
    password_hash: str,
    *,
    document_id: str | None = None,
) -> bool:
    """Check ``plain`` against a stored argon2 hash.

    Raises:
        ShareIntegrityError: The stored hash is not a valid argon2 hash.
    """
    try:
        return _hasher.verify(password_hash, plain)
    except VerifyMismatchError:
        return False
    except (InvalidHashError, VerificationError) as exc:
        try:
            _hasher.verify(_get_decoy_hash(), plain)
        except VerifyMismatchError:
            pass
        raise ShareIntegrityError(document_id, 'malformed password hash') from exc
