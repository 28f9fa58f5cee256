"""
auth/guard.py -- Per-request access decision.

AccessGuard answers one question for every incoming request: may it reach a
handler, and as whom? The api layer runs it in middleware before routing and
stores the returned claims on request.state.identity.

Decision order:
  1. OPTIONS (CORS preflight) and public paths -> allowed, no identity.
  2. No "Bearer <token>" Authorization header -> Unauthorized.
  3. Token fails verification                 -> Unauthorized.
  4. Claims say the account is inactive       -> ValidationFailure("Account is blocked").
  5. Admin-prefixed path and claims not admin -> Forbidden.
  6. Otherwise allowed with the verified claims.

Paths are compared exactly for public_paths and by prefix for public_prefixes
and admin_prefixes. Trailing slashes are not normalized.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.models import IdentityClaims
from auth.service import MSG_ACCOUNT_BLOCKED, AuthService
from core.errors import Forbidden, Unauthorized, ValidationFailure

API_PREFIX = "/api/v1"

DEFAULT_PUBLIC_PATHS = (
    f"{API_PREFIX}/auth/register",
    f"{API_PREFIX}/auth/login",
    f"{API_PREFIX}/auth/refresh-token",
    f"{API_PREFIX}/health",
)
DEFAULT_PUBLIC_PREFIXES = (f"{API_PREFIX}/auth/activate/",)
DEFAULT_ADMIN_PREFIXES = (f"{API_PREFIX}/admin",)

BEARER_PREFIX = "Bearer "


def bearer_token(authorization: str | None) -> str | None:
    """Return the token part of a "Bearer <token>" header, or None."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


class AccessGuard:
    def __init__(
        self,
        service: AuthService,
        public_paths: Iterable[str] = DEFAULT_PUBLIC_PATHS,
        public_prefixes: Iterable[str] = DEFAULT_PUBLIC_PREFIXES,
        admin_prefixes: Iterable[str] = DEFAULT_ADMIN_PREFIXES,
        logger: logging.Logger | None = None,
    ) -> None:
        self.service = service
        self.public_paths = frozenset(public_paths)
        self.public_prefixes = tuple(public_prefixes)
        self.admin_prefixes = tuple(admin_prefixes)
        self.logger = logger or logging.getLogger("authgate.guard")

    def is_public(self, path: str) -> bool:
        return path in self.public_paths or path.startswith(self.public_prefixes)

    def is_admin_path(self, path: str) -> bool:
        return path.startswith(self.admin_prefixes)

    def check(self, method: str, path: str, authorization: str | None) -> IdentityClaims | None:
        """Return the caller's claims, None for anonymous-allowed requests, or raise."""
        op = "AccessGuard.check"
        if method.upper() == "OPTIONS" or self.is_public(path):
            return None

        token = bearer_token(authorization)
        if token is None:
            self.logger.info("[%s] missing bearer token for %s %s", op, method, path)
            raise Unauthorized(op=op)

        identity = self.service.verify_access(token)

        if not identity.is_active:
            self.logger.warning("[%s] blocked user %s on %s", op, identity.id, path)
            raise ValidationFailure(MSG_ACCOUNT_BLOCKED, op=op)

        if self.is_admin_path(path) and not identity.is_admin:
            self.logger.warning("[%s] non-admin user %s denied %s", op, identity.id, path)
            raise Forbidden(op=op)

        return identity
