"""
api/routes/auth.py -- Account and session REST endpoints.

Routes:
  POST /api/auth/register   -- create account; sets session cookie; 201
  POST /api/auth/login      -- password login; sets session cookie
  GET  /api/auth/me         -- current user info (requires auth)
  POST /api/auth/logout     -- clears session cookie; always 200

Errors raised by auth.service (ValidationError, DuplicateEmail, NotFound,
InvalidCredentials) and by the auth gate (Unauthenticated) propagate to the
AuthError handler in api/main.py, which renders the error envelope.

Security:
  Cache-Control: no-store on responses that carry a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import AuthResponse, LoginRequest, MeResponse, MessageResponse, PublicUser, RegisterRequest
from auth import service
from auth.dependencies import get_current_user
from auth.models import User
from auth.tokens import clear_session_cookie, set_session_cookie

# Auth policy:
# - POST /api/auth/register: public
# - POST /api/auth/login:    public
# - POST /api/auth/logout:   public -- clearing a cookie needs no prior auth
# - GET  /api/auth/me:       requires auth (get_current_user)
router = APIRouter()


def _token_response(request: Request, status_code: int, message: str, user: User, token: str) -> JSONResponse:
    body = AuthResponse(message=message, data=PublicUser.from_user(user), token=token)
    resp = JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))
    set_session_cookie(resp, token, request.app.state.settings)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account, set the session cookie and return the user + token."""
    state = request.app.state
    user, token = service.register(
        state.user_store,
        state.issuer,
        name=body.name,
        email=body.email,
        password=body.password,
        confirm_password=body.confirm_password,
    )
    return _token_response(request, 201, "User registered successfully.", user, token)


@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie."""
    state = request.app.state
    user, token = service.login(state.user_store, state.issuer, body.email, body.password)
    return _token_response(request, 200, "Login successful.", user, token)


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return the profile of the authenticated user."""
    return MeResponse(data=PublicUser.from_user(current_user))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Clear the session cookie. Stateless -- always succeeds."""
    resp = JSONResponse(content=MessageResponse(message="Logged out successfully.").model_dump(by_alias=True))
    clear_session_cookie(resp, request.app.state.settings)
    return resp
