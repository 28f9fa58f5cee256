"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The guard middleware (api/main.py) has already verified the bearer token by
the time a handler runs and left the claims on request.state.identity.
get_current_identity() only reads that result back; it never re-verifies the
token. Admin-only paths are rejected by the guard before routing.

auth/dependencies.py may import from fastapi because it is part of the
FastAPI dependency injection system. It does not import from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import IdentityClaims
from core.errors import Unauthorized


def get_current_identity(request: Request) -> IdentityClaims:
    """Require an authenticated, active caller. Raises Unauthorized otherwise.

    Use as a FastAPI dependency:
        @router.get("/profile")
        def route(identity: IdentityClaims = Depends(get_current_identity)): ...
    """
    identity: IdentityClaims | None = getattr(request.state, "identity", None)
    if identity is None or not identity.is_active:
        raise Unauthorized(op="get_current_identity")
    return identity
