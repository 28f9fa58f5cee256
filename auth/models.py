"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
domain shape; the store maps rows into them and the service does the work.
The one exception is Registration.is_valid_for_activation(), which is a pure
predicate over the record's own fields and is kept beside the data it reads.

All datetimes are timezone-aware UTC.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Registration:
    """A pending signup awaiting email activation.

    is_active goes True -> False exactly once: either on activation
    (activated_at is set in the same write) or on supersession by a newer
    registration for the same email (activated_at stays None).

    token is the opaque activation token mailed to the registrant;
    verify_code is the 5-digit code checked alongside it.
    """

    name: str
    email: str
    password_hash: str
    ip_address: str
    user_agent: str
    created_at: datetime
    expired_at: datetime
    token: str
    verify_code: str
    is_active: bool = True
    activated_at: datetime | None = None
    id: int | None = None

    def is_valid_for_activation(self, now: datetime) -> bool:
        return self.activated_at is None and now < self.expired_at and self.is_active


@dataclass
class User:
    """An activated account. Created once, from a successful activation."""

    name: str
    email: str
    password_hash: str
    created_at: datetime
    updated_at: datetime
    is_active: bool = True
    is_admin: bool = False
    last_login_at: datetime | None = None
    id: int | None = None


@dataclass
class Session:
    """A refresh-token-backed login session.

    refresh_token is a single-use bearer capability: rotating it deletes this
    row and inserts a replacement in the same transaction.
    """

    user_id: int
    refresh_token: str
    user_agent: str
    ip_address: str
    expired_at: datetime
    created_at: datetime
    id: int | None = None


@dataclass(frozen=True)
class IdentityClaims:
    """Verified access-token payload. Carries no secret."""

    id: int
    name: str
    email: str
    is_active: bool
    is_admin: bool
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class SessionResult:
    """Returned by login and refresh."""

    user: User
    access_token: str
    refresh_token: str
