"""
api/routes/v1/auth.py -- Registration, login and session REST endpoints.

Routes:
  POST /api/v1/auth/register              -- start a signup; mails token + code
  POST /api/v1/auth/activate/{token}      -- confirm signup with the mailed code
  POST /api/v1/auth/login                 -- email + password -> access + refresh token
  POST /api/v1/auth/refresh-token         -- rotate a refresh token
  GET  /api/v1/auth/profile               -- identity from the bearer token (requires auth)
  POST /api/v1/auth/logout                -- revoke one of the caller's refresh tokens (requires auth)

Security:
  Public routes are rate-limited per client IP (AUTH_RATE_LIMIT, default 5/minute).
  Every error path goes through AuthService, which owns the enumeration-safe messages;
  handlers never build their own auth error text.
  Cache-Control: no-store on every response that carries a token.

Handlers are plain `def`: AuthService calls bcrypt and the database, both
blocking, so FastAPI runs them in its threadpool.
"""

# No `from __future__ import annotations` here: @limiter.limit wraps the
# handlers, and FastAPI resolves string annotations against the wrapper.
from typing import Any

from fastapi import APIRouter, Depends, Path, Request
from fastapi.responses import JSONResponse

from api.limiter import auth_rate_limit, limiter
from api.models import (
    OPAQUE_TOKEN_PATTERN,
    ActivateRequest,
    IdentityResponse,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    SessionResponse,
    SuccessResponse,
    UserResponse,
)
from auth.dependencies import get_current_identity
from auth.models import IdentityClaims
from auth.service import AuthService

REGISTERED_MESSAGE = "Registration successful, check your email to confirm"
LOGGED_OUT_MESSAGE = "Logged out"

# Auth policy (enforced by AccessGuard in api/main.py before routing):
# - POST /api/v1/auth/register:          public
# - POST /api/v1/auth/activate/{token}:  public (prefix)
# - POST /api/v1/auth/login:             public
# - POST /api/v1/auth/refresh-token:     public -- the refresh token is the credential
# - GET  /api/v1/auth/profile:           requires bearer access token
# - POST /api/v1/auth/logout:            requires bearer access token
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=SuccessResponse)
@limiter.limit(auth_rate_limit)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Start a registration. The response is the same for a fresh signup and a resend."""
    service = _service(request)
    service.register(body.name, body.email, body.password, _client_ip(request), _user_agent(request))
    return _ok(REGISTERED_MESSAGE)


@router.post("/auth/activate/{token}", response_model=SuccessResponse)
@limiter.limit(auth_rate_limit)
def activate(
    request: Request,
    body: ActivateRequest,
    token: str = Path(pattern=OPAQUE_TOKEN_PATTERN),
) -> JSONResponse:
    """Activate a pending registration with its mailed verification code."""
    user = _service(request).activate(token, body.code)
    return _ok(UserResponse.from_user(user))


@router.post("/auth/login", response_model=SuccessResponse)
@limiter.limit(auth_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and open a session.

    Unknown email and wrong password return the same error; AuthService.login
    verifies against a dummy hash for unknown emails so timing matches too.
    """
    result = _service(request).login(body.email, body.password, _client_ip(request), _user_agent(request))
    return _ok(SessionResponse.from_result(result))


@router.post("/auth/refresh-token", response_model=SuccessResponse)
@limiter.limit(auth_rate_limit)
def refresh_token(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for new tokens. The presented token is consumed."""
    result = _service(request).refresh_token(body.refresh_token, _client_ip(request), _user_agent(request))
    return _ok(SessionResponse.from_result(result))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/profile", response_model=SuccessResponse)
def profile(identity: IdentityClaims = Depends(get_current_identity)) -> JSONResponse:
    """Return the identity carried by the caller's access token."""
    return _ok(IdentityResponse.from_claims(identity))


@router.post("/auth/logout", response_model=SuccessResponse)
def logout(
    request: Request,
    body: RefreshRequest,
    identity: IdentityClaims = Depends(get_current_identity),
) -> JSONResponse:
    """Revoke one of the caller's sessions. Other sessions stay valid."""
    _service(request).logout(body.refresh_token, identity)
    return _ok(LOGGED_OUT_MESSAGE)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _user_agent(request: Request) -> str:
    return request.headers.get("user-agent", "")


def _ok(result: Any) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=SuccessResponse(result=result).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp
