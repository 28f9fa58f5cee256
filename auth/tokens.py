"""
auth/tokens.py -- Access-token codec and opaque token generation.

JWT: python-jose with HS256. Access tokens carry the identity claim set
(id, name, email, is_active, is_admin) plus iat, exp and a fixed subject
marker. They are signed, not encrypted -- nothing secret goes in them.

verify_token() distinguishes three failure modes so callers can log them:
  MalformedToken -- not structurally a JWT (header cannot be decoded)
  InvalidToken   -- bad signature, wrong algorithm, or missing/ill-typed claims
  ExpiredToken   -- signature valid but now > exp
Signature is checked before expiry, so a forged token that is also expired
reports InvalidToken. AuthService.verify_access() collapses all three into a
single Unauthorized; the distinction lives only in server-side logs.

Opaque tokens (activation tokens, refresh tokens): secrets.token_hex(32) gives
256 bits of entropy -- collisions and guessing are both infeasible.

Verify codes: secrets.randbelow() for a uniform draw from 10000..99999.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import IdentityClaims, User

ALGORITHM = "HS256"
SUBJECT = "user_session"

VERIFY_CODE_MIN = 10000
VERIFY_CODE_MAX = 99999


class TokenError(Exception):
    """Base for token-codec failures. Never shown to clients."""


class MalformedToken(TokenError):
    pass


class InvalidToken(TokenError):
    pass


class ExpiredToken(TokenError):
    pass


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def claims_for_user(user: User) -> dict:
    """Build the identity part of the claim set from a User."""
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "is_active": user.is_active,
        "is_admin": user.is_admin,
    }


def issue_token(claims: dict, ttl: timedelta, secret: str, now: datetime | None = None) -> str:
    """Sign claims into a compact JWT that expires at now + ttl."""
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        **claims,
        "sub": SUBJECT,
        "iat": issued_at,
        "exp": issued_at + ttl,
    }
    try:
        return jwt.encode(payload, secret, algorithm=ALGORITHM)
    except JWTError as exc:
        raise TokenError(f"could not sign token: {exc}") from exc


def verify_token(token: str, secret: str) -> IdentityClaims:
    """Verify signature and expiry, then validate the claim set.

    Raises MalformedToken, InvalidToken or ExpiredToken. Claims are only read
    after jose has verified the signature.
    """
    try:
        jwt.get_unverified_header(token)
    except JWTError as exc:
        raise MalformedToken(str(exc)) from exc

    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except ExpiredSignatureError as exc:
        raise ExpiredToken(str(exc)) from exc
    except JWTError as exc:
        raise InvalidToken(str(exc)) from exc

    return _claims_from_payload(payload)


def _claims_from_payload(payload: dict) -> IdentityClaims:
    if payload.get("sub") != SUBJECT:
        raise InvalidToken("unexpected subject")
    try:
        user_id = payload["id"]
        name = payload["name"]
        email = payload["email"]
        is_active = payload["is_active"]
        is_admin = payload["is_admin"]
        iat = payload["iat"]
        exp = payload["exp"]
    except KeyError as exc:
        raise InvalidToken(f"missing claim {exc.args[0]!r}") from exc

    # bool is a subclass of int; an id of True is not a user id.
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        raise InvalidToken("claim 'id' must be an integer")
    if not isinstance(name, str) or not isinstance(email, str):
        raise InvalidToken("claims 'name' and 'email' must be strings")
    if not isinstance(is_active, bool) or not isinstance(is_admin, bool):
        raise InvalidToken("claims 'is_active' and 'is_admin' must be booleans")

    return IdentityClaims(
        id=user_id,
        name=name,
        email=email,
        is_active=is_active,
        is_admin=is_admin,
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )


class TokenCodec:
    """Binds the signing secret so the codec can be injected as a dependency."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("TokenCodec requires a non-empty secret")
        self._secret = secret

    def issue(self, claims: dict, ttl: timedelta, now: datetime | None = None) -> str:
        return issue_token(claims, ttl, self._secret, now=now)

    def verify(self, token: str) -> IdentityClaims:
        return verify_token(token, self._secret)


# ---------------------------------------------------------------------------
# Opaque tokens and verify codes
# ---------------------------------------------------------------------------


def generate_opaque_token() -> str:
    """Return 64 hex chars (256 bits) for activation and refresh tokens."""
    return secrets.token_hex(32)


def generate_verify_code() -> str:
    """Return a uniformly random 5-digit code in [10000, 99999]."""
    return str(VERIFY_CODE_MIN + secrets.randbelow(VERIFY_CODE_MAX - VERIFY_CODE_MIN + 1))
