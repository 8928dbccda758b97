"""
API request and response models for LeadBridge REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire field names are camelCase (confirmPassword, createdAt, isExpired);
Python attributes stay snake_case via the alias generator.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import User

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register.

    Fields default to "" so a missing field reaches the service, which
    reports it with the same message as an empty one. Passwords are taken
    verbatim; the service trims name and email.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(default="", max_length=255)
    email: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=128)
    confirm_password: Optional[str] = Field(default=None, max_length=128)


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login. The password is not trimmed."""

    email: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=128)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class PublicUser(_CamelModel):
    """User projection safe to return to clients. Never carries the hash."""

    id: str
    name: str
    email: str
    username: Optional[str] = None
    status: str
    created_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        """Build a PublicUser from an auth User dataclass."""
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            username=user.username,
            status=user.status,
            created_at=user.created_at,
        )


class AuthResponse(_CamelModel):
    """Response for POST /api/auth/register and /api/auth/login."""

    success: bool = True
    message: str
    data: PublicUser
    token: str


class MeResponse(_CamelModel):
    """Response for GET /api/auth/me."""

    success: bool = True
    data: PublicUser


class MessageResponse(_CamelModel):
    """Response for logout and integration disconnect."""

    success: bool = True
    message: str


class IntegrationStatusResponse(_CamelModel):
    """Response for GET /api/auth/integration-status.

    Serialized with exclude_unset so a missing connection is reported as
    {"connected": false} alone.
    """

    connected: bool
    is_expired: Optional[bool] = None
    location_id: Optional[str] = None
    company_id: Optional[str] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
