"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container). Dataclasses own domain shape;
stores and services do the work. The one exception is
OAuthConnection.state, which derives the explicit connection variant from the
stored fields so callers never re-infer it from field combinations.

Layer rule: no imports from api/, core/ or crm/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union

USER_STATUSES = ("active", "inactive", "suspended")


# ---------------------------------------------------------------------------
# Connection state variant
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Disconnected:
    """No connection record, or a record that was never connected."""


@dataclass(frozen=True)
class Connected:
    expires_at: datetime


@dataclass(frozen=True)
class Errored:
    """A refresh failed; stale tokens are still stored."""

    message: str


ConnectionState = Union[Disconnected, Connected, Errored]


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass
class OAuthConnection:
    """Stored access/refresh token pair linking a user to the CRM account.

    Embedded in User (0..1). Replaced wholesale by a code exchange,
    merge-updated by a refresh, removed by a disconnect.
    """

    access_token: str
    refresh_token: str
    expires_at: datetime  # aware UTC
    connected: bool = True
    location_id: str | None = None
    company_id: str | None = None
    last_error: str | None = None
    updated_at: str | None = None

    @property
    def state(self) -> ConnectionState:
        if self.connected:
            return Connected(expires_at=self.expires_at)
        if self.last_error:
            return Errored(message=self.last_error)
        return Disconnected()


@dataclass
class User:
    """A registered account.

    password_hash is None when the record was loaded without it (the default
    projection for everything except login).
    username defaults to the email local part, assigned by the store.
    """

    name: str
    email: str
    id: str | None = None
    username: str | None = None
    password_hash: str | None = None
    status: str = "active"
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None
    oauth_connection: OAuthConnection | None = None
