"""
auth/oauth.py -- OAuth token broker for the CRM connection.

Owns the per-user connection lifecycle:

  exchange_code -> persist -> get_valid_token (expiry check) -> refresh

States per user (auth.models.ConnectionState):
  Disconnected  no record
  Connected     valid token; "expiring" when within refresh_margin of expiry
  Errored       last refresh failed -- connected=False, last_error set, the
                stale tokens are left in place

Refresh is lazy: get_valid_token() is the only path that triggers it, never a
background timer. It checks expiry only, not `connected`, so an Errored
connection re-attempts the refresh on every access.

Concurrency:
  Two requests racing near expiry would both refresh with the same (possibly
  already rotated) refresh token, and the loser would mark the connection
  Errored although the winner succeeded. Refreshes are therefore
  single-flight per user: the second caller waits on the user's lock,
  re-reads the record and returns the token the first caller stored.

State parameter:
  base64(JSON {"userId": ...}) round-tripped through the provider. It
  identifies the user that started the connect flow.

Layer rule: no imports from api/ or crm/.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import math
import threading
import weakref
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from auth.errors import (
    InvalidState,
    MissingCode,
    NoConnection,
    ProviderError,
    RefreshFailed,
    TokenExchangeFailed,
    UserNotFound,
)
from auth.models import Connected, Disconnected, OAuthConnection
from auth.provider import TokenProvider
from auth.store import UserStore

logger = logging.getLogger("leadbridge.auth.oauth")

DEFAULT_REFRESH_MARGIN = timedelta(minutes=5)
# Used when a token response omits expires_in (it is optional in RFC 6749).
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# State parameter
# ---------------------------------------------------------------------------


def encode_state(user_id: str) -> str:
    """Build the state value the frontend sends to the provider's consent page."""
    return base64.b64encode(json.dumps({"userId": user_id}).encode("utf-8")).decode("ascii")


def decode_state(state: str | None) -> str:
    """Return the userId carried by a state value, or raise InvalidState."""
    if not state:
        raise InvalidState("Missing state parameter.")
    try:
        # Query strings turn '+' into ' '; restore it before decoding.
        raw = base64.b64decode(state.replace(" ", "+"), validate=True)
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise InvalidState("State parameter is not base64-encoded JSON.") from exc
    user_id = payload.get("userId") if isinstance(payload, dict) else None
    if not user_id:
        raise InvalidState("State parameter does not identify a user.")
    return str(user_id)


# ---------------------------------------------------------------------------
# Broker
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConnectionStatus:
    """Read-only view returned by OAuthTokenBroker.status()."""

    connected: bool
    is_expired: bool | None = None
    location_id: str | None = None
    company_id: str | None = None


class OAuthTokenBroker:
    """Exchanges, stores, checks and refreshes CRM tokens per user.

    Usage:
        broker = OAuthTokenBroker(store, CRMTokenClient(...))
        broker.exchange_code(code, location_id, company_id, state)
        token = broker.get_valid_token(user_id)
    """

    def __init__(
        self,
        store: UserStore,
        provider: TokenProvider,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
        default_lifetime: timedelta = DEFAULT_TOKEN_LIFETIME,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.provider = provider
        self.refresh_margin = refresh_margin
        self.default_lifetime = default_lifetime
        self._clock = clock
        # An entry lives only while some caller holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Code exchange
    # ------------------------------------------------------------------

    def exchange_code(
        self,
        code: str | None,
        location_id: str | None,
        company_id: str | None,
        state: str | None,
    ) -> OAuthConnection:
        """Trade an authorization code for tokens and store a fresh connection.

        Replaces any prior connection wholesale.

        Raises:
            MissingCode: no code (the provider is not contacted)
            TokenExchangeFailed: provider error, no access or refresh token
                returned, or an unusable expires_in
            InvalidState: state is not base64 JSON carrying a userId
            UserNotFound: state names a user that does not exist
        """
        if not code:
            raise MissingCode("No authorization code received.")

        try:
            token_data = self.provider.exchange_code(code)
            if not token_data.get("access_token") or not token_data.get("refresh_token"):
                detail = token_data.get("error_description") or token_data.get("error") or "incomplete token response"
                raise ProviderError(str(detail))
            lifetime = self._lifetime(token_data)
        except ProviderError as exc:
            raise TokenExchangeFailed(str(exc)) from exc

        user_id = decode_state(state)

        now = self._clock()
        connection = OAuthConnection(
            access_token=token_data["access_token"],
            refresh_token=token_data["refresh_token"],
            expires_at=now + lifetime,
            connected=True,
            location_id=location_id or None,
            company_id=company_id or None,
            updated_at=now.isoformat(),
        )
        if not self.store.replace_oauth_connection(user_id, connection):
            raise UserNotFound(f"No user with id {user_id!r}.")

        logger.info("CRM connection stored for user %s (expires %s)", user_id, connection.expires_at.isoformat())
        return connection

    # ------------------------------------------------------------------
    # Token access
    # ------------------------------------------------------------------

    def get_valid_token(self, user_id: str) -> str:
        """Return an access token valid beyond the refresh margin.

        Refreshes when the stored token expires within the margin or already
        has. Only expiry is checked, not `connected`.

        Raises:
            NoConnection: the user has no connection record
            RefreshFailed: the refresh attempt failed
        """
        connection = self._load(user_id)
        if self._is_fresh(connection):
            return connection.access_token

        with self._lock_for(user_id):
            # A concurrent caller may have refreshed while we waited.
            connection = self._load(user_id)
            if self._is_fresh(connection):
                return connection.access_token
            return self._refresh_locked(user_id, connection.refresh_token)

    def refresh(self, user_id: str, refresh_token: str) -> str:
        """Exchange refresh_token for a new token pair and store it.

        On success access/refresh token and expires_at are patched in place;
        location, company and connected are not touched. On failure the
        connection is marked connected=False with last_error set, the stale
        tokens stay, and RefreshFailed is raised.
        """
        with self._lock_for(user_id):
            return self._refresh_locked(user_id, refresh_token)

    def _refresh_locked(self, user_id: str, refresh_token: str) -> str:
        try:
            token_data = self.provider.refresh(refresh_token)
            if not token_data.get("access_token"):
                raise ProviderError("Token endpoint returned no access token.")
            lifetime = self._lifetime(token_data)
        except ProviderError as exc:
            message = str(exc)
            self.store.merge_oauth_connection(user_id, connected=False, last_error=message)
            logger.warning("CRM token refresh failed for user %s: %s", user_id, message)
            raise RefreshFailed(f"Could not refresh CRM token: {message}") from exc

        now = self._clock()
        fields: dict[str, Any] = {
            "access_token": token_data["access_token"],
            "expires_at": now + lifetime,
            "updated_at": now.isoformat(),
        }
        if token_data.get("refresh_token"):
            fields["refresh_token"] = token_data["refresh_token"]
        self.store.merge_oauth_connection(user_id, **fields)
        logger.info("CRM token refreshed for user %s", user_id)
        return token_data["access_token"]

    # ------------------------------------------------------------------
    # Disconnect / status
    # ------------------------------------------------------------------

    def disconnect(self, user_id: str) -> None:
        """Remove the user's connection. Succeeds even if none exists."""
        self.store.unset_oauth_connection(user_id)
        logger.info("CRM connection removed for user %s", user_id)

    def status(self, user_id: str) -> ConnectionStatus:
        """Report the stored connection. Never raises for a missing record."""
        user = self.store.get_by_id(user_id)
        connection = user.oauth_connection if user is not None else None
        state = connection.state if connection is not None else Disconnected()
        if not isinstance(state, Connected):
            return ConnectionStatus(connected=False)
        return ConnectionStatus(
            connected=True,
            is_expired=self._clock() > state.expires_at,
            location_id=connection.location_id,
            company_id=connection.company_id,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, user_id: str) -> OAuthConnection:
        user = self.store.get_by_id(user_id)
        if user is None or user.oauth_connection is None:
            raise NoConnection("User has no CRM connection.")
        return user.oauth_connection

    def _lifetime(self, token_data: dict[str, Any]) -> timedelta:
        """Token lifetime from expires_in, or default_lifetime when it is absent.

        A value that is not a positive number raises ProviderError.
        """
        raw = token_data.get("expires_in")
        if raw is None or raw == "":
            return self.default_lifetime
        try:
            seconds = float(raw)
            if not math.isfinite(seconds) or seconds <= 0:
                raise ValueError(raw)
            return timedelta(seconds=seconds)
        except (TypeError, ValueError, OverflowError) as exc:
            raise ProviderError(f"Token endpoint returned an invalid expires_in: {raw!r}.") from exc

    def _is_fresh(self, connection: OAuthConnection) -> bool:
        return connection.expires_at > self._clock() + self.refresh_margin

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock
