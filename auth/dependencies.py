"""
auth/dependencies.py -- The auth gate: FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. Session cookie ("token") -- set by register/login.
  2. Authorization: Bearer <token> header -- API clients.

authenticate_request() is the gate itself and raises Unauthenticated with a
reason (no_token, invalid_token, token_expired, user_not_found). The API's
AuthError handler turns that into a 401 envelope.
get_current_user() is the dependency form, reading the issuer and the store
from app.state.

The gate is synchronous and never retries.

Layer rule: no imports from api/, core/ or crm/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import InvalidToken, TokenExpired, Unauthenticated
from auth.models import User
from auth.store import UserStore
from auth.tokens import SessionTokenIssuer

SESSION_COOKIE = "token"


def extract_token(request: Request, cookie_name: str = SESSION_COOKIE) -> str | None:
    """Return the candidate session token: cookie first, then Bearer header."""
    token: str | None = request.cookies.get(cookie_name)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def authenticate_request(
    request: Request,
    issuer: SessionTokenIssuer,
    store: UserStore,
    cookie_name: str = SESSION_COOKIE,
) -> User:
    """Resolve the acting user for a request, or raise Unauthenticated.

    The user is loaded without its password hash and attached to
    request.state.user for downstream handlers.
    """
    token = extract_token(request, cookie_name)
    if token is None:
        raise Unauthenticated("no_token")

    try:
        user_id = issuer.verify(token)
    except TokenExpired as exc:
        raise Unauthenticated("token_expired") from exc
    except InvalidToken as exc:
        raise Unauthenticated("invalid_token") from exc

    # The account may have been removed after the token was issued.
    user = store.get_by_id(user_id)
    if user is None:
        raise Unauthenticated("user_not_found")

    request.state.user = user
    return user


def get_current_user(request: Request) -> User:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    state = request.app.state
    return authenticate_request(
        request,
        state.issuer,
        state.user_store,
        cookie_name=state.settings.session_cookie_name,
    )
