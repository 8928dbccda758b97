"""
api/routes/integration.py -- CRM OAuth connection endpoints.

Routes:
  GET  /api/auth/oauth-callback          -- provider redirect target; 302 to the frontend
  GET  /api/auth/integration-status      -- connection status (requires auth)
  POST /api/auth/integration-disconnect  -- remove the connection (requires auth)

The callback is a browser redirect flow: it never returns an error body and
never lets an exception escape. Every outcome is a 302 to
{FRONTEND_URL}{OAUTH_REDIRECT_PATH} with either
  connected=true&provider=<name>
or
  error=<code>[&message=<detail>]
where code is no_code, token_exchange, invalid_state, user_not_found or
server_error.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.models import IntegrationStatusResponse, MessageResponse
from auth.dependencies import get_current_user
from auth.errors import InvalidState, MissingCode, TokenExchangeFailed, UserNotFound
from auth.models import User

logger = logging.getLogger("leadbridge.api.integration")

# Auth policy:
# - GET  /api/auth/oauth-callback:         public -- the provider redirects the browser here;
#                                          the user is identified by the state parameter
# - GET  /api/auth/integration-status:     requires auth (get_current_user)
# - POST /api/auth/integration-disconnect: requires auth (get_current_user)
router = APIRouter()


def _frontend_redirect(request: Request, **params: str) -> RedirectResponse:
    settings = request.app.state.settings
    target = f"{settings.frontend_url.rstrip('/')}{settings.oauth_redirect_path}?{urlencode(params)}"
    return RedirectResponse(target, status_code=302)


@router.get("/auth/oauth-callback", status_code=302)
def oauth_callback(
    request: Request,
    code: Optional[str] = None,
    locationId: Optional[str] = None,  # noqa: N803 -- provider's query parameter name
    companyId: Optional[str] = None,  # noqa: N803
    state: Optional[str] = None,
) -> RedirectResponse:
    """Exchange the authorization code and store the connection on the state's user."""
    broker = request.app.state.broker
    logger.info(
        "OAuth callback received (code=%s, locationId=%s, companyId=%s)",
        "yes" if code else "no",
        locationId,
        companyId,
    )
    try:
        broker.exchange_code(code, locationId, companyId, state)
    except MissingCode:
        logger.warning("OAuth callback without authorization code")
        return _frontend_redirect(request, error="no_code")
    except TokenExchangeFailed as exc:
        logger.warning("OAuth token exchange failed: %s", exc)
        return _frontend_redirect(request, error="token_exchange", message=str(exc))
    except InvalidState as exc:
        logger.warning("OAuth callback with invalid state: %s", exc)
        return _frontend_redirect(request, error="invalid_state")
    except UserNotFound as exc:
        logger.warning("OAuth callback for unknown user: %s", exc)
        return _frontend_redirect(request, error="user_not_found")
    except Exception as exc:
        logger.exception("Unexpected error in OAuth callback")
        return _frontend_redirect(request, error="server_error", message=str(exc))

    return _frontend_redirect(request, connected="true", provider=request.app.state.settings.crm_provider_name)


@router.get("/auth/integration-status", response_model=IntegrationStatusResponse)
def integration_status(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Report whether the user's CRM connection is active and unexpired."""
    status = request.app.state.broker.status(current_user.id)
    if not status.connected:
        body = IntegrationStatusResponse(connected=False)
    else:
        body = IntegrationStatusResponse(
            connected=True,
            is_expired=status.is_expired,
            location_id=status.location_id,
            company_id=status.company_id,
        )
    return JSONResponse(content=body.model_dump(by_alias=True, exclude_unset=True))


@router.post("/auth/integration-disconnect", response_model=MessageResponse)
def integration_disconnect(request: Request, current_user: User = Depends(get_current_user)) -> MessageResponse:
    """Remove the user's CRM connection. Succeeds even if none exists."""
    request.app.state.broker.disconnect(current_user.id)
    return MessageResponse(message="Connection removed successfully.")
