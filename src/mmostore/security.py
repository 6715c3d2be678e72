"""
Credentials and identifiers handed out by the account store.

- ``userlogin.id`` is a uuid4 string chosen before the insert, so a
  registration knows its account id without reading it back.
- ``userlogin.accessToken`` is an opaque 64-character hex token; game
  servers compare it verbatim, it carries no claims.
- ``userlogin.password`` holds the argon2 encoded string. Its cost
  parameters are embedded, so rows written under an older hasher still
  verify and ``needs_rehash`` tells the login path to upgrade them.
"""

from __future__ import annotations

import secrets
import uuid

import argon2

DEFAULT_HASHER = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=65536,  # 64 MB
    parallelism=1,
    hash_len=32,
    salt_len=16,
    type=argon2.Type.ID,
)

# hex-encoded, fits userlogin.accessToken
ACCESS_TOKEN_BYTES = 32


def hash_password(password: str, hasher: argon2.PasswordHasher | None = None) -> str:
    return (hasher or DEFAULT_HASHER).hash(password)


def verify_password(password: str, password_hash: str, hasher: argon2.PasswordHasher | None = None) -> bool:
    """
    Check a login attempt against a stored hash.

    A mismatch, an empty column or a value that is not an argon2 hash at all
    all read as a failed login.
    """
    if not password_hash:
        return False
    try:
        return (hasher or DEFAULT_HASHER).verify(password_hash, password)
    except (argon2.exceptions.VerifyMismatchError, argon2.exceptions.InvalidHashError):
        return False


def needs_rehash(password_hash: str, hasher: argon2.PasswordHasher | None = None) -> bool:
    """True when the stored hash was made with different cost parameters."""
    return (hasher or DEFAULT_HASHER).check_needs_rehash(password_hash)


def new_user_id() -> str:
    """Account ids are assigned here, before the row is inserted."""
    return str(uuid.uuid4())


def generate_access_token() -> str:
    return secrets.token_hex(ACCESS_TOKEN_BYTES)
