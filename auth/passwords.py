"""
auth/passwords.py -- bcrypt password hashing (direct usage, no passlib wrapper).

passlib's internal wrap-bug detection creates a password longer than 72 bytes,
which bcrypt 4.x rejects with an explicit error. Direct bcrypt usage is
simpler and has no compatibility shim.

The raw password is never persisted: UserStore only ever receives the value
returned by hash_password().
"""

from __future__ import annotations

import bcrypt

BCRYPT_ROUNDS = 10


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are silently truncated by bcrypt. The API
    layer caps password length (Pydantic max_length=128 characters), and
    _encode() truncates to 72 bytes so bcrypt 4.x never raises.
    """
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:72]
