"""
auth/errors.py -- Domain exceptions for authentication and the CRM connection.

Services raise these errors to express rule violations. They carry the HTTP
status and machine-readable code the API layer reports, so api/main.py can
translate every one of them with a single exception handler.

The OAuth callback is a browser redirect flow: its failures (MissingCode,
TokenExchangeFailed, InvalidState, UserNotFound) are reported as redirect
query parameters by api/routes/integration.py, never as error bodies.

Layer rule: no imports from api/, core/ or crm/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    code: str = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)

    @property
    def message(self) -> str:
        return str(self)


# ---------------------------------------------------------------------------
# Registration / login
# ---------------------------------------------------------------------------


class ValidationError(AuthError):
    """Missing or malformed input."""

    status_code = 400
    code = "validation_error"


class DuplicateEmail(AuthError):
    """Email address is already registered."""

    status_code = 400
    code = "duplicate_email"


class DuplicateUsername(AuthError):
    """Username is already taken."""

    status_code = 400
    code = "duplicate_username"


class NotFound(AuthError):
    """User not found."""

    status_code = 404
    code = "not_found"


class InvalidCredentials(AuthError):
    """Invalid credentials."""

    status_code = 401
    code = "invalid_credentials"


# ---------------------------------------------------------------------------
# Session tokens and the auth gate
# ---------------------------------------------------------------------------


class InvalidToken(AuthError):
    """Session token signature or structure is invalid."""

    status_code = 401
    code = "invalid_token"


class TokenExpired(InvalidToken):
    """Session token has expired."""

    code = "token_expired"


class Unauthenticated(AuthError):
    """Request is not authenticated.

    reason is one of: no_token, invalid_token, token_expired, user_not_found.
    """

    status_code = 401
    code = "unauthorized"

    _MESSAGES = {
        "no_token": "Not authorized, no token.",
        "invalid_token": "Not authorized, token invalid.",
        "token_expired": "Not authorized, token expired.",
        "user_not_found": "User not found.",
    }

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(self._MESSAGES.get(reason, "Authentication required."))


# ---------------------------------------------------------------------------
# OAuth token broker
# ---------------------------------------------------------------------------


class ProviderError(AuthError):
    """The provider token endpoint rejected the request or was unreachable."""

    status_code = 502
    code = "provider_error"


class MissingCode(AuthError):
    """No authorization code received."""

    code = "no_code"


class TokenExchangeFailed(AuthError):
    """Authorization code exchange failed."""

    status_code = 502
    code = "token_exchange"


class InvalidState(AuthError):
    """OAuth state parameter could not be decoded."""

    code = "invalid_state"


class UserNotFound(AuthError):
    """No user matches the OAuth state."""

    status_code = 404
    code = "user_not_found"


class NoConnection(AuthError):
    """User has no CRM connection."""

    status_code = 409
    code = "no_connection"


class RefreshFailed(AuthError):
    """Could not refresh the CRM access token."""

    status_code = 502
    code = "refresh_failed"
