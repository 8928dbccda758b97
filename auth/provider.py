"""
auth/provider.py -- Client for the CRM's OAuth2 token endpoint.

Uses Authlib's requests integration (OAuth2Session) with the
client_secret_post auth method, so client_id and client_secret travel in the
form-urlencoded body next to grant_type and code / refresh_token:

  POST {token_url}
  client_id, client_secret, grant_type=authorization_code, code, redirect_uri
  client_id, client_secret, grant_type=refresh_token, refresh_token

Response JSON: {access_token, refresh_token, expires_in, ...}.

A new OAuth2Session is created per call: the session object stores the token
it fetched, and the broker serves many users concurrently.

Every failure -- OAuth error payload, HTTP 5xx, timeout, connection error,
non-JSON body -- surfaces as ProviderError carrying a readable message. The
broker decides what that means (TokenExchangeFailed or RefreshFailed).

Layer rule: no imports from api/ or crm/.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import requests
from authlib.integrations.base_client import OAuthError
from authlib.integrations.requests_client import OAuth2Session

from auth.errors import ProviderError

logger = logging.getLogger("leadbridge.auth.provider")

DEFAULT_TIMEOUT = 10.0


class TokenProvider(Protocol):
    """What the broker needs from a provider token endpoint."""

    def exchange_code(self, code: str) -> dict[str, Any]: ...

    def refresh(self, refresh_token: str) -> dict[str, Any]: ...


class CRMTokenClient:
    """TokenProvider backed by the CRM's real token endpoint."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str,
        redirect_uri: str,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    def _session(self) -> OAuth2Session:
        return OAuth2Session(
            client_id=self.client_id,
            client_secret=self.client_secret,
            token_endpoint_auth_method="client_secret_post",  # noqa: S106 -- auth method name, not a password
            redirect_uri=self.redirect_uri,
        )

    def exchange_code(self, code: str) -> dict[str, Any]:
        """Trade an authorization code for an access/refresh token pair."""
        with self._session() as session:
            return self._call(
                "authorization_code",
                session.fetch_token,
                self.token_url,
                grant_type="authorization_code",
                code=code,
                timeout=self.timeout,
            )

    def refresh(self, refresh_token: str) -> dict[str, Any]:
        """Trade a refresh token for a new token pair."""
        with self._session() as session:
            return self._call(
                "refresh_token",
                session.refresh_token,
                self.token_url,
                refresh_token=refresh_token,
                timeout=self.timeout,
            )

    @staticmethod
    def _call(grant: str, func, *args, **kwargs) -> dict[str, Any]:
        try:
            token = func(*args, **kwargs)
        except OAuthError as exc:
            detail = exc.description or exc.error or str(exc)
            logger.warning("Token endpoint rejected %s grant: %s", grant, detail)
            raise ProviderError(f"{exc.error}: {detail}" if exc.error and exc.description else detail) from exc
        except requests.Timeout as exc:
            logger.warning("Token endpoint timed out (%s grant)", grant)
            raise ProviderError("Token endpoint timed out.") from exc
        except requests.RequestException as exc:
            logger.warning("Token endpoint request failed (%s grant): %s", grant, exc)
            raise ProviderError(str(exc)) from exc
        except ValueError as exc:
            # Body was not JSON
            logger.warning("Token endpoint returned an unreadable body (%s grant)", grant)
            raise ProviderError("Token endpoint returned an invalid response.") from exc
        return dict(token or {})
