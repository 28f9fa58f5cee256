"""
API request and response models for authgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Every response uses one envelope:
    {"success": true,  "result": ...}
    {"success": false, "error": {"type": ..., "message": ..., "code": ...}}

Request models only bound sizes and types. Email syntax, password length and
every other business rule are checked by AuthService, so the same rules apply
whether a call comes over HTTP or from main.py.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import IdentityClaims, SessionResult, User

# 64 lowercase hex chars -- secrets.token_hex(32)
OPAQUE_TOKEN_PATTERN = r"^[0-9a-f]{64}$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register. A blank name defaults to the email."""

    name: str = Field(default="", max_length=255)
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class ActivateRequest(BaseModel):
    """Request body for POST /api/v1/auth/activate/{token}."""

    code: str = Field(min_length=1, max_length=16)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh-token and /auth/logout."""

    refresh_token: str = Field(pattern=OPAQUE_TOKEN_PATTERN)


# ---------------------------------------------------------------------------
# Response payloads
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a User. The password hash is never part of it."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    is_active: bool
    is_admin: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            is_active=user.is_active,
            is_admin=user.is_admin,
            last_login_at=user.last_login_at,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class SessionResponse(UserResponse):
    """Login / refresh result: the user fields flattened next to both tokens."""

    access_token: str
    refresh_token: str

    @classmethod
    def from_result(cls, result: SessionResult) -> "SessionResponse":
        return cls(
            **UserResponse.from_user(result.user).model_dump(),
            access_token=result.access_token,
            refresh_token=result.refresh_token,
        )


class IdentityResponse(BaseModel):
    """Response payload for GET /api/v1/auth/profile -- the verified claim set."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    is_active: bool
    is_admin: bool

    @classmethod
    def from_claims(cls, claims: IdentityClaims) -> "IdentityResponse":
        return cls(
            id=claims.id,
            name=claims.name,
            email=claims.email,
            is_active=claims.is_active,
            is_admin=claims.is_admin,
        )


class HealthResponse(BaseModel):
    """Response payload for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str
    version: str
    components: dict[str, str]


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class SuccessResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    result: Any = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload. code repeats type for clients keyed on it."""

    model_config = ConfigDict(frozen=True)

    type: str
    message: str
    code: str


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    error: ErrorDetail

    @classmethod
    def of(cls, error_type: str, message: str) -> "ErrorResponse":
        return cls(error=ErrorDetail(type=error_type, message=message, code=error_type))
