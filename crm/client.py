"""
crm/client.py -- Authenticated calls to the CRM REST API.

Every call asks the OAuth token broker for a valid access token first, so an
expiring token is refreshed transparently before the request goes out.

Module-level requests session shared across calls for connection pooling.
max_redirects=3 replaces the requests default of 30 -- this is one known API,
3 hops is generous and protects against SSRF via redirect chains.
"""

import logging
from typing import Any, Optional

import requests

from auth.oauth import OAuthTokenBroker

logger = logging.getLogger("leadbridge.crm")

_session = requests.Session()
_session.max_redirects = 3


class CRMApiClient:
    """Thin wrapper that signs CRM API requests with the user's token.

    Usage:
        client = CRMApiClient(broker, settings.crm_api_base_url, settings.crm_api_version)
        contacts = client.request(user.id, "contacts/?locationId=abc")
    """

    def __init__(self, broker: OAuthTokenBroker, base_url: str, api_version: str, timeout: float = 10.0) -> None:
        self.broker = broker
        self.base_url = base_url.rstrip("/") + "/"
        self.api_version = api_version
        self.timeout = timeout

    def request(self, user_id: str, endpoint: str, method: str = "GET", data: Optional[Any] = None) -> Any:
        """Call `endpoint` (relative to base_url) as user_id and return the decoded JSON.

        Raises NoConnection / RefreshFailed from the broker, and
        requests.RequestException for transport or HTTP errors (logged, then
        re-raised).
        """
        token = self.broker.get_valid_token(user_id)
        url = self.base_url + endpoint.lstrip("/")
        try:
            resp = _session.request(
                method,
                url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Version": self.api_version,
                    "Accept": "application/json",
                },
                json=data,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("CRM API call failed (%s %s): %s", method, endpoint, e)
            raise
        if not resp.content:
            return None
        return resp.json()
