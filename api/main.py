"""
api/main.py -- FastAPI application entry point for LeadBridge.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware -- adds CORS headers for allowed browser origins
                       (credentials allowed so the session cookie travels)
  2. log_requests   -- one log line per request with latency

Lifespan builds every component from the Settings singleton and stores it on
app.state; routes and the auth gate read them from there:
  app.state.settings    core.config.Settings
  app.state.user_store  auth.store.UserStore
  app.state.issuer      auth.tokens.SessionTokenIssuer
  app.state.broker      auth.oauth.OAuthTokenBroker
  app.state.crm         crm.client.CRMApiClient
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.integration import router as integration_router
from auth.errors import AuthError
from auth.oauth import OAuthTokenBroker
from auth.provider import CRMTokenClient
from auth.store import UserStore
from auth.tokens import SessionTokenIssuer
from core.config import get_settings
from crm.client import CRMApiClient

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("leadbridge.api")

# Fails fast here, at import, when SECRET_KEY is missing or too short.
_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build application components on startup and release them on shutdown.

    Startup order matters: the store first, then the issuer, then the broker
    (needs the store), then the CRM client (needs the broker).
    """
    settings = get_settings()
    logger.info("LeadBridge API starting up")
    app.state.settings = settings
    app.state.user_store = UserStore(settings.database_url)
    app.state.issuer = SessionTokenIssuer.from_settings(settings)
    if not settings.crm_configured:
        logger.warning("CRM_CLIENT_ID / CRM_CLIENT_SECRET not set -- OAuth code exchange will fail")
    provider = CRMTokenClient(
        client_id=settings.crm_client_id,
        client_secret=settings.crm_client_secret,
        token_url=settings.crm_token_url,
        redirect_uri=settings.oauth_callback_url,
        timeout=settings.provider_timeout_seconds,
    )
    app.state.broker = OAuthTokenBroker(
        app.state.user_store,
        provider,
        refresh_margin=timedelta(seconds=settings.token_refresh_margin_seconds),
        default_lifetime=timedelta(seconds=settings.crm_default_token_ttl_seconds),
    )
    app.state.crm = CRMApiClient(
        app.state.broker,
        settings.crm_api_base_url,
        settings.crm_api_version,
        timeout=settings.provider_timeout_seconds,
    )
    logger.info("Auth initialized (provider=%s)", settings.crm_provider_name)

    yield

    app.state.user_store.close()
    logger.info("LeadBridge API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="LeadBridge API",
    description="User accounts, session tokens and the CRM OAuth connection.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/api-docs",
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(dict.fromkeys([_settings.frontend_url, *_settings.cors_origins])),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler; wall-clock time around call_next gives the latency.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(integration_router, prefix="/api", tags=["CRM Integration"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Translate domain errors (auth.errors) to their status and code."""
    return _error(exc.status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with a structured error when the body or query params fail validation."""
    return _error(400, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it -- str(dict) produces a Python repr,
    not JSON.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The full traceback goes to the server log. The client receives a generic
    message; the exception text is included only in DEBUG (development) mode.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    detail = str(exc) if request.app.state.settings.debug else None
    return _error(500, "server_error", "An unexpected error occurred.", detail)


# ---------------------------------------------------------------------------
# Root and health
#
# Defined directly in main.py (not in a router) so they are always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/", include_in_schema=False)
async def root() -> PlainTextResponse:
    return PlainTextResponse("API is running")


@app.get("/api/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
