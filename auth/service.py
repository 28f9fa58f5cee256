"""
auth/service.py -- Authentication and session-lifecycle orchestration.

AuthService owns the state machine:

    register --> pending Registration --activate--> User
    User --login--> Session --refresh_token--> new Session (old one deleted)
                            --logout--> (deleted)

and every multi-step rule that spans entities. It holds no state of its own;
persistence, hashing, token signing, email and background execution are
injected (see auth/interfaces.py), together with the logger and the lifecycle
durations. Nothing here reads settings or module-level globals.

Security rules enforced here:
  [Enumeration] login() always runs hasher.verify(), against the user's hash
      or against hasher.dummy_hash when the email is unknown, and returns the
      same "Invalid credentials" failure for unknown email and wrong password.
      "Account is blocked" is only reported once the password is proven.
  [Oracle] refresh_token() reports an unknown/rotated token with the same
      generic "Invalid credentials" as a bad login. verify_access() collapses
      malformed / forged / expired tokens into one Unauthorized.
  [Activation] unknown, already-activated, superseded and expired activation
      tokens all fail with the same message. A wrong code never creates a user.
  [Rotation] refresh tokens are single-use; the store deletes the old session
      and inserts the new one atomically and refuses if the old one is gone.

Side effects that must not hold up or fail a request (confirmation email,
last-login touch) are handed to the injected worker.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import dataclasses
import hmac
import logging
import re
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.interfaces import AuthStorePort, Hasher, Mailer, TokenCodecPort, Worker
from auth.models import IdentityClaims, Registration, Session, SessionResult, User
from auth.tokens import TokenError, claims_for_user, generate_opaque_token, generate_verify_code
from core.errors import ConflictFailure, InternalFailure, NotFound, Unauthorized, ValidationFailure

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

# Inclusive. Unusually restrictive upper bound; kept as the product's current policy.
PASSWORD_MIN_LENGTH = 5
PASSWORD_MAX_LENGTH = 15

MSG_INVALID_EMAIL = "Invalid email format"
MSG_INVALID_PASSWORD = f"Password must be between {PASSWORD_MIN_LENGTH} and {PASSWORD_MAX_LENGTH} characters"
MSG_EMAIL_TAKEN = "Email is already taken"
MSG_LINK_EXPIRED = "Activation link has expired, please register again"
MSG_WRONG_CODE = "Wrong verification code"
MSG_INVALID_CREDENTIALS = "Invalid credentials"
MSG_ACCOUNT_BLOCKED = "Account is blocked"
MSG_TOKEN_EXPIRED = "Token has expired"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    def __init__(
        self,
        *,
        store: AuthStorePort,
        hasher: Hasher,
        codec: TokenCodecPort,
        mailer: Mailer,
        worker: Worker,
        access_ttl: timedelta = timedelta(hours=1),
        refresh_ttl: timedelta = timedelta(days=7),
        registration_ttl: timedelta = timedelta(hours=24),
        resend_window: timedelta = timedelta(minutes=15),
        clock: Callable[[], datetime] = _utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.codec = codec
        self.mailer = mailer
        self.worker = worker
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.registration_ttl = registration_ttl
        self.resend_window = resend_window
        self.clock = clock
        self.logger = logger or logging.getLogger("authgate.auth")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, name: str, email: str, password: str, ip_address: str, user_agent: str) -> None:
        """Create (or re-send) a pending registration and mail its activation code.

        Returns None in both the fresh and the resend case so the caller cannot
        tell them apart. The only distinguishable outcome is ConflictFailure
        for an email that already belongs to an activated account.
        """
        op = "AuthService.register"
        email = normalize_email(email)
        name = name.strip() or email

        if not EMAIL_PATTERN.match(email):
            raise ValidationFailure(MSG_INVALID_EMAIL, op=op)
        if not PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH:
            raise ValidationFailure(MSG_INVALID_PASSWORD, op=op)

        if self.store.get_user_by_email(email) is not None:
            self.logger.warning("[%s] registration attempt for taken email %s", op, email)
            raise ConflictFailure(MSG_EMAIL_TAKEN, op=op)

        now = self.clock()
        live = self.store.get_live_registration_by_email(email, now)
        if live is not None and live.created_at > now - self.resend_window:
            self.logger.info("[%s] resending confirmation for %s", op, email)
            self._send_confirmation(live)
            return

        registration = Registration(
            name=name,
            email=email,
            password_hash=self.hasher.hash(password),
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=now,
            expired_at=now + self.registration_ttl,
            token=generate_opaque_token(),
            verify_code=generate_verify_code(),
            is_active=True,
        )
        self.store.create_registration(registration)
        self.logger.info("[%s] registration %s created for %s", op, registration.id, email)
        self._send_confirmation(registration)

    def activate(self, token: str, verify_code: str) -> User:
        """Turn a pending registration into a User.

        Unknown, already-activated, superseded and expired tokens all raise the
        same ValidationFailure; the reason is only logged.
        """
        op = "AuthService.activate"
        now = self.clock()

        registration = self.store.get_registration_by_token(token)
        if registration is None:
            self.logger.warning("[%s] unknown activation token", op)
            raise ValidationFailure(MSG_LINK_EXPIRED, op=op)

        if not registration.is_valid_for_activation(now):
            self.logger.warning(
                "[%s] activation of non-pending registration %s (active=%s activated_at=%s expired_at=%s)",
                op,
                registration.id,
                registration.is_active,
                registration.activated_at,
                registration.expired_at,
            )
            raise ValidationFailure(MSG_LINK_EXPIRED, op=op)

        if not hmac.compare_digest(registration.verify_code.encode("utf-8"), verify_code.encode("utf-8")):
            self.logger.warning("[%s] wrong verification code for registration %s", op, registration.id)
            raise ValidationFailure(MSG_WRONG_CODE, op=op)

        try:
            user = self.store.create_user_from_registration(registration, now)
        except NotFound as exc:
            # Lost a race with a concurrent activation of the same token.
            self.logger.warning("[%s] registration %s activated concurrently", op, registration.id)
            raise ValidationFailure(MSG_LINK_EXPIRED, op=op) from exc

        self.logger.info("[%s] user %s activated (%s)", op, user.id, user.email)
        return user

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, ip_address: str, user_agent: str) -> SessionResult:
        """Check credentials and open a new session."""
        op = "AuthService.login"
        email = normalize_email(email)

        user = self.store.get_user_by_email(email)
        # Always pay for one bcrypt verification, known email or not.
        hashed = user.password_hash if user is not None else self.hasher.dummy_hash
        password_ok = self.hasher.verify(password, hashed)

        if not password_ok or user is None:
            self.logger.warning("[%s] invalid credentials for %s from %s", op, email, ip_address)
            raise ValidationFailure(MSG_INVALID_CREDENTIALS, op=op)

        if not user.is_active:
            self.logger.warning("[%s] blocked user %s attempted login", op, user.id)
            raise ValidationFailure(MSG_ACCOUNT_BLOCKED, op=op)

        now = self.clock()
        access_token = self._issue_access_token(user, op)
        session = Session(
            user_id=user.id,
            refresh_token=generate_opaque_token(),
            user_agent=user_agent,
            ip_address=ip_address,
            expired_at=now + self.refresh_ttl,
            created_at=now,
        )
        self.store.create_session_and_login(session)
        self.worker.submit(f"{op}.set_user_last_login", self.store.set_user_last_login, user.id)

        self.logger.info("[%s] user %s logged in from %s", op, user.id, ip_address)
        return SessionResult(user=user, access_token=access_token, refresh_token=session.refresh_token)

    def refresh_token(self, refresh_token: str, ip_address: str, user_agent: str) -> SessionResult:
        """Exchange a refresh token for a new access token and a new refresh token.

        The presented token stops working the moment this succeeds.
        """
        op = "AuthService.refresh_token"
        now = self.clock()

        session = self.store.get_session_by_refresh_token(refresh_token)
        if session is None:
            self.logger.warning("[%s] unknown refresh token from %s", op, ip_address)
            raise ValidationFailure(MSG_INVALID_CREDENTIALS, op=op)

        if now > session.expired_at:
            self.logger.warning("[%s] expired session %s (expired_at=%s)", op, session.id, session.expired_at)
            raise ValidationFailure(MSG_TOKEN_EXPIRED, op=op)

        user = self.store.get_user_by_id(session.user_id)
        if user is None:
            self.logger.error("[%s] session %s references missing user %s", op, session.id, session.user_id)
            raise Unauthorized(op=op)
        if not user.is_active:
            self.logger.warning("[%s] blocked user %s attempted refresh", op, user.id)
            raise ValidationFailure(MSG_ACCOUNT_BLOCKED, op=op)

        access_token = self._issue_access_token(user, op)
        new_session = Session(
            user_id=user.id,
            refresh_token=generate_opaque_token(),
            user_agent=user_agent,
            ip_address=ip_address,
            expired_at=now + self.refresh_ttl,
            created_at=now,
        )
        try:
            self.store.rotate_session(refresh_token, new_session)
        except NotFound as exc:
            # Another request rotated or revoked this token first.
            self.logger.warning("[%s] refresh token for user %s already rotated", op, user.id)
            raise ValidationFailure(MSG_INVALID_CREDENTIALS, op=op) from exc

        self.logger.info("[%s] session rotated for user %s", op, user.id)
        return SessionResult(user=user, access_token=access_token, refresh_token=new_session.refresh_token)

    def logout(self, refresh_token: str, identity: IdentityClaims) -> None:
        """Revoke one of the caller's own sessions."""
        op = "AuthService.logout"
        if not self.store.delete_session(refresh_token, identity.id):
            self.logger.warning("[%s] user %s tried to revoke an unknown or foreign session", op, identity.id)
            raise ValidationFailure(MSG_INVALID_CREDENTIALS, op=op)
        self.logger.info("[%s] session revoked for user %s", op, identity.id)

    def verify_access(self, token: str) -> IdentityClaims:
        """Verify an access token. Every failure is the same Unauthorized."""
        op = "AuthService.verify_access"
        try:
            return self.codec.verify(token)
        except TokenError as exc:
            self.logger.warning("[%s] rejected access token: %s (%s)", op, type(exc).__name__, exc)
            raise Unauthorized(op=op) from exc

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def set_admin(self, email: str, is_admin: bool) -> User:
        """Grant or revoke the admin flag. Operator use only (main.py)."""
        op = "AuthService.set_admin"
        user = self.store.get_user_by_email(normalize_email(email))
        if user is None:
            raise NotFound("User not found", op=op)
        self.store.set_user_admin(user.id, is_admin)
        self.logger.info("[%s] user %s is_admin=%s", op, user.id, is_admin)
        return dataclasses.replace(user, is_admin=is_admin)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue_access_token(self, user: User, op: str) -> str:
        try:
            return self.codec.issue(claims_for_user(user), self.access_ttl)
        except TokenError as exc:
            self.logger.error("[%s] could not sign access token for user %s: %s", op, user.id, exc, exc_info=exc)
            raise InternalFailure(op=op) from exc

    def _send_confirmation(self, registration: Registration) -> None:
        self.worker.submit("AuthService.send_confirmation", self.mailer.send_confirmation, registration)
