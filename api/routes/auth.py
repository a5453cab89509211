"""
api/routes/auth.py -- Authentication REST endpoints.

Routes (mounted under /api):
  POST   /api/auth/register                -- create an identity (public)
  POST   /api/auth/login                   -- email/password -> user + token pair (public)
  POST   /api/auth/refresh-token           -- refresh token -> new token pair (public)
  POST   /api/auth/logout                  -- revoke refresh tokens per logout_policy (requires auth)
  GET    /api/auth/me                      -- current identity (requires auth)
  POST   /api/auth/change-password         -- re-hash password, revoke sessions (requires auth)
  DELETE /api/auth/users/{user_id}/sessions -- revoke a user's sessions (admin only)

Security:
  [H2] POST /login is rate-limited per IP (Settings.login_rate_limit).
  [C1] AuthService.authenticate() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries credentials.
  Refresh tokens are bound to client_origin() at issue time; the same resolver
  is used by get_current_user() so the origin check compares like with like.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import (
    ChangePasswordRequest,
    LoginData,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    SuccessResponse,
    TokenPairOut,
    UserOut,
)
from auth.dependencies import Authorizer, client_origin, get_current_user, require_admin
from auth.errors import AuthenticationFailed
from auth.models import Identity
from auth.service import AuthService

router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _origin(request: Request) -> str:
    authorizer: Authorizer = request.app.state.authorizer
    return client_origin(request, authorizer.trust_forwarded_for)


def _ok(message: str, data=None, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=SuccessResponse(message=message, data=data if data is not None else {}).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register")
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Register a new identity with role "user". 400 if the email is already registered."""
    user = _service(request).register(body.email, body.name, body.password)
    return _ok("Registration successful", {"user": UserOut.from_identity(user).model_dump(by_alias=True)})


@limiter.limit(login_limit)  # [H2] brute-force mitigation -- must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login")
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return the user and a fresh token pair.

    Returns the same 401 message for an unknown email and a wrong password.
    """
    user, tokens = _service(request).login(body.email, body.password, _origin(request))
    data = LoginData(
        user=UserOut.from_identity(user),
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
    )
    return _ok("Login Successful!", data.model_dump(by_alias=True))


@router.post("/auth/refresh-token")
def refresh_token(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Exchange a refresh token for a new access/refresh pair.

    Unknown and expired tokens both answer 401 "Invalid refresh token".
    """
    token = body.token if body is not None else None
    if not token:
        raise AuthenticationFailed("Refresh token is required")
    tokens = _service(request).refresh(token, _origin(request))
    data = TokenPairOut(access_token=tokens.access_token, refresh_token=tokens.refresh_token)
    return _ok("Tokens generated successfully", data.model_dump(by_alias=True))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout")
def logout(
    request: Request,
    body: Optional[LogoutRequest] = None,
    current_user: Identity = Depends(get_current_user),
) -> JSONResponse:
    """Revoke the caller's refresh tokens according to Settings.logout_policy. Idempotent."""
    _service(request).logout(current_user, body.token if body is not None else None)
    return _ok("Logout Successfully")


@router.get("/auth/me")
def me(current_user: Identity = Depends(get_current_user)) -> JSONResponse:
    """Return the identity resolved from the bearer token."""
    return _ok("Current user", {"user": UserOut.from_identity(current_user).model_dump(by_alias=True)})


@router.post("/auth/change-password")
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: Identity = Depends(get_current_user),
) -> JSONResponse:
    """Change the caller's password and sign out every session (all refresh tokens revoked)."""
    revoked = _service(request).change_password(current_user, body.current_password, body.password)
    return _ok("Password changed successfully", {"revokedSessions": revoked})


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------


@router.delete("/auth/users/{user_id}/sessions")
def revoke_sessions(
    request: Request,
    user_id: str,
    current_user: Identity = Depends(require_admin),
) -> JSONResponse:
    """Delete every refresh token of user_id. Admin only; 404 for an unknown user."""
    revoked = _service(request).revoke_sessions(user_id)
    return _ok("Sessions revoked", {"revokedSessions": revoked})
