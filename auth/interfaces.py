"""
auth/interfaces.py -- Capability protocols consumed by AuthService.

AuthService depends on these shapes, not on concrete classes. Production
wiring passes BcryptHasher, TokenCodec, AuthStore, LogMailer and
BackgroundWorker; tests substitute recording fakes.

Store contract: lookups return None for "not found" and raise a classified
core.errors.AppError for any other failure. Multi-row mutations are atomic.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Protocol

from auth.models import IdentityClaims, Registration, Session, User


class Hasher(Protocol):
    dummy_hash: str

    def hash(self, plaintext: str) -> str: ...

    def verify(self, plaintext: str, hashed: str) -> bool: ...


class TokenCodecPort(Protocol):
    def issue(self, claims: dict, ttl: timedelta, now: datetime | None = None) -> str: ...

    def verify(self, token: str) -> IdentityClaims: ...


class UserStore(Protocol):
    def get_user_by_email(self, email: str) -> User | None: ...

    def get_user_by_id(self, user_id: int) -> User | None: ...

    def set_user_last_login(self, user_id: int) -> None: ...

    def set_user_admin(self, user_id: int, is_admin: bool) -> bool: ...


class RegistrationStore(Protocol):
    def create_registration(self, registration: Registration) -> int:
        """Deactivate live registrations for the email, then insert. One transaction."""
        ...

    def get_registration_by_token(self, token: str) -> Registration | None: ...

    def get_live_registration_by_email(self, email: str, now: datetime) -> Registration | None: ...

    def create_user_from_registration(self, registration: Registration, now: datetime) -> User:
        """Insert the User and mark the registration activated. One transaction."""
        ...


class SessionStore(Protocol):
    def get_session_by_refresh_token(self, refresh_token: str) -> Session | None: ...

    def create_session_and_login(self, session: Session) -> int:
        """Insert the session and stamp last_login_at. One transaction."""
        ...

    def rotate_session(self, old_refresh_token: str, new_session: Session) -> int:
        """Delete the old row (exactly one), insert the new one, stamp last_login_at.

        Raises NotFound if the old row is already gone.
        """
        ...

    def delete_session(self, refresh_token: str, user_id: int) -> bool: ...


class AuthStorePort(UserStore, RegistrationStore, SessionStore, Protocol):
    """Everything AuthService needs from persistence."""


class Mailer(Protocol):
    def send_confirmation(self, registration: Registration) -> None: ...


class Worker(Protocol):
    def submit(self, op: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any: ...
