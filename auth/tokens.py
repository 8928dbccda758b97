"""
auth/tokens.py -- Session token issuance/verification and cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry the user id as `sub`, plus `iat`
       and `exp`. Validity is purely signature + expiry -- there is no
       revocation list. verify() raises TokenExpired for an expired token and
       InvalidToken for everything else; the auth gate turns both into 401.

  SECRET_KEY: passed in by the app assembly from core.config.Settings, which
       refuses to start without one. Nothing in this module reads the
       environment.

  Cookie: httpOnly, samesite=lax, Secure when SECURE_COOKIES=true, max-age
       equal to the token lifetime so both expire together.

Layer rule: no imports from api/ or crm/. Import from core/ is allowed --
core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import InvalidToken, TokenExpired

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("leadbridge.auth")

_ALGORITHM = "HS256"

DEFAULT_LIFETIME = timedelta(days=30)


class SessionTokenIssuer:
    """Mints and verifies signed, time-limited session tokens.

    Usage:
        issuer = SessionTokenIssuer(settings.secret_key)
        token = issuer.issue(user.id)
        user_id = issuer.verify(token)   # raises InvalidToken / TokenExpired
    """

    def __init__(self, secret_key: str, lifetime: timedelta = DEFAULT_LIFETIME) -> None:
        if not secret_key:
            raise ValueError("SessionTokenIssuer requires a signing key.")
        self._secret_key = secret_key
        self.lifetime = lifetime

    @classmethod
    def from_settings(cls, settings: Settings) -> SessionTokenIssuer:
        return cls(settings.secret_key, lifetime=timedelta(days=settings.session_expire_days))

    def issue(self, user_id: str) -> str:
        """Encode a signed JWT for user_id expiring `lifetime` from now."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "iat": now,
            "exp": now + self.lifetime,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> str:
        """Decode and verify a JWT, returning the user id it was issued for."""
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            logger.debug("Session token rejected: %s", exc)
            raise InvalidToken() from exc
        user_id = payload.get("sub")
        if not user_id:
            raise InvalidToken("Session token has no subject.")
        return user_id


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, settings: Settings) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true (production).
    max_age: matches the JWT lifetime so both expire together.
    """
    response.set_cookie(
        settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.session_max_age,
    )


def clear_session_cookie(response, settings: Settings) -> None:
    response.delete_cookie(
        settings.session_cookie_name,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )
