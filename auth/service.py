"""
auth/service.py -- Registration and login business logic.

Pure business logic with no HTTP dependencies. Raises auth.errors domain
errors that the API layer maps to status codes; cookies are the route's
concern.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateEmail, DuplicateUsername, InvalidCredentials, NotFound, ValidationError
from auth.models import User
from auth.passwords import hash_password, verify_password
from auth.store import UserStore, derive_username
from auth.tokens import SessionTokenIssuer

logger = logging.getLogger("leadbridge.auth")

EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")
MIN_PASSWORD_LENGTH = 6


def register(
    store: UserStore,
    issuer: SessionTokenIssuer,
    name: str,
    email: str,
    password: str,
    confirm_password: str | None,
) -> tuple[User, str]:
    """Create an account and issue its first session token.

    Returns (user, token). The user is the public projection (no hash).

    Raises:
        ValidationError: missing field, bad email, short or mismatched password
        DuplicateEmail: email already registered
        DuplicateUsername: the username derived from the email is taken
    """
    name = (name or "").strip()
    email = (email or "").strip().lower()
    if not name or not email or not password:
        raise ValidationError("Please fill in all fields.")
    if not EMAIL_RE.match(email):
        raise ValidationError("Please enter a valid email address.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if password != confirm_password:
        raise ValidationError("Passwords do not match.")

    if store.get_by_email(email) is not None:
        raise DuplicateEmail("Email is already registered.")
    username = derive_username(email)
    if store.get_by_username(username) is not None:
        raise DuplicateUsername(f"Username {username!r} is already taken.")

    try:
        user_id = store.create_user(
            User(name=name, email=email, username=username, password_hash=hash_password(password))
        )
    except IntegrityError as exc:
        # Lost a race with a concurrent registration for the same email.
        raise DuplicateEmail("Email is already registered.") from exc

    user = store.get_by_id(user_id)
    logger.info("Registered user %s", user_id)
    return user, issuer.issue(user_id)


def login(store: UserStore, issuer: SessionTokenIssuer, email: str, password: str) -> tuple[User, str]:
    """Verify credentials, stamp last_login and issue a session token.

    Raises:
        ValidationError: email or password missing
        NotFound: no account for the email
        InvalidCredentials: wrong password (last_login untouched)
    """
    email = (email or "").strip().lower()
    if not email or not password:
        raise ValidationError("Please provide email and password.")

    user = store.get_by_email(email, with_password=True)
    if user is None:
        raise NotFound("User not found.")
    if not verify_password(password, user.password_hash or ""):
        raise InvalidCredentials("Invalid credentials.")

    store.update_last_login(user.id)
    logger.info("User %s logged in", user.id)
    return store.get_by_id(user.id), issuer.issue(user.id)
