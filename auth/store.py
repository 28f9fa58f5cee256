"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AuthStore is the repository for
registrations, users and sessions; the _row_to_* functions are the mappers.
Route and service code never touches SQL directly.

Transactions:
  Every multi-row mutation runs inside one `engine.begin()` block, which
  commits on normal exit and rolls back on any exception:
    create_registration          -- supersede live rows for the email + insert
    create_user_from_registration -- mark registration activated + insert user
    create_session_and_login     -- insert session + stamp last_login_at
    rotate_session               -- delete old session + insert new + stamp
  rotate_session requires its DELETE to hit exactly one row. When two
  requests rotate the same refresh token concurrently, the second DELETE runs
  after the first transaction commits, matches nothing, and the whole unit
  rolls back with NotFound -- so only one caller ever gets a new token.

Timestamps are stored as fixed-width ISO 8601 UTC strings (microsecond
precision, +00:00 offset). Fixed width keeps string comparison in SQL
(`expired_at > :now`) equal to chronological comparison.

Errors: raw SQLAlchemy exceptions are classified once, here, via
core.errors.classify_db_error, tagged with the store operation name.
Lookups return None for "not found".

Security: all queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import Registration, Session, User
from core.errors import AppError, InternalFailure, NotFound, classify_db_error

_DEFAULT_DB_URL = "sqlite:///authgate.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_registrations = Table(
    "registrations",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, index=True),
    Column("password_hash", Text, nullable=False),
    Column("ip_address", String(64), nullable=False, server_default=""),
    Column("user_agent", Text, nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("expired_at", String(32), nullable=False),
    Column("activated_at", String(32)),  # NULL until activation
    Column("token", String(64), nullable=False, unique=True),
    Column("verify_code", String(10), nullable=False),
)

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("is_admin", Boolean, nullable=False, server_default="0"),
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("refresh_token", String(64), nullable=False, unique=True),
    Column("user_agent", Text, nullable=False, server_default=""),
    Column("ip_address", String(64), nullable=False, server_default=""),
    Column("expired_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers never block behind a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


def _parse(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for Registration, User and Session entities.

    Usage:
        store = AuthStore("sqlite:///authgate.db")
        reg_id = store.create_registration(registration)
        user = store.get_user_by_email("alice@example.com")
        store.close()
    """

    def __init__(
        self,
        db_url: str = _DEFAULT_DB_URL,
        timeout_seconds: float = 5.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._logger = logger or logging.getLogger("authgate.store")
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            # Seconds to wait on a locked database before failing.
            connect_args["timeout"] = timeout_seconds
        elif db_url.startswith("postgresql"):
            connect_args["options"] = f"-c statement_timeout={int(timeout_seconds * 1000)}"
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    @contextmanager
    def _classified(self, entity: str, op: str) -> Iterator[None]:
        """Classify raw driver errors once, at the point of occurrence."""
        try:
            yield
        except AppError:
            raise
        except SQLAlchemyError as exc:
            err = classify_db_error(exc, entity, op)
            if isinstance(err, InternalFailure):
                self._logger.error("[%s] database error: %s", op, exc, exc_info=exc)
            else:
                self._logger.warning("[%s] %s", op, err.message)
            raise err from exc

    # ------------------------------------------------------------------
    # Registrations
    # ------------------------------------------------------------------

    def create_registration(self, registration: Registration) -> int:
        """Supersede live registrations for the email, then insert the new one.

        Both statements share one transaction so there is never a moment with
        two live registrations for the same email.
        """
        op = "AuthStore.create_registration"
        with self._classified("Registration", op), self.engine.begin() as conn:
            conn.execute(
                _registrations.update()
                .where(
                    (_registrations.c.email == registration.email)
                    & (_registrations.c.is_active.is_(True))
                    & (_registrations.c.activated_at.is_(None))
                )
                .values(is_active=False)
            )
            result = conn.execute(
                _registrations.insert().values(
                    name=registration.name,
                    email=registration.email,
                    password_hash=registration.password_hash,
                    ip_address=registration.ip_address,
                    user_agent=registration.user_agent,
                    created_at=_iso(registration.created_at),
                    is_active=registration.is_active,
                    expired_at=_iso(registration.expired_at),
                    activated_at=_iso(registration.activated_at) if registration.activated_at else None,
                    token=registration.token,
                    verify_code=registration.verify_code,
                )
            )
            registration.id = result.inserted_primary_key[0]
        self._logger.info("[%s] registration %s created", op, registration.id)
        return registration.id

    def get_registration_by_token(self, token: str) -> Registration | None:
        """Look up a registration by activation token, whatever its state."""
        with self._classified("Registration", "AuthStore.get_registration_by_token"), self.engine.connect() as conn:
            row = conn.execute(_registrations.select().where(_registrations.c.token == token)).fetchone()
        return _row_to_registration(row) if row is not None else None

    def get_live_registration_by_email(self, email: str, now: datetime) -> Registration | None:
        """Return the newest live registration (active, not activated, not expired)."""
        with self._classified("Registration", "AuthStore.get_live_registration_by_email"), self.engine.connect() as conn:
            row = conn.execute(
                _registrations.select()
                .where(
                    (_registrations.c.email == email)
                    & (_registrations.c.is_active.is_(True))
                    & (_registrations.c.activated_at.is_(None))
                    & (_registrations.c.expired_at > _iso(now))
                )
                .order_by(_registrations.c.created_at.desc())
                .limit(1)
            ).fetchone()
        return _row_to_registration(row) if row is not None else None

    def count_live_registrations(self, email: str, now: datetime) -> int:
        """Number of live registrations for an email. At most 1 by construction."""
        with self._classified("Registration", "AuthStore.count_live_registrations"), self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_registrations)
                .where(
                    (_registrations.c.email == email)
                    & (_registrations.c.is_active.is_(True))
                    & (_registrations.c.activated_at.is_(None))
                    & (_registrations.c.expired_at > _iso(now))
                )
            ).scalar()
        return result or 0

    def create_user_from_registration(self, registration: Registration, now: datetime) -> User:
        """Mark the registration activated and insert its User, atomically.

        The UPDATE is guarded on the registration still being pending, so two
        concurrent activations of the same token cannot both create a user:
        the loser updates zero rows and the unit rolls back with NotFound.
        A duplicate email on the INSERT rolls back with ConflictFailure.
        """
        op = "AuthStore.create_user_from_registration"
        stamp = _iso(now)
        with self._classified("User", op), self.engine.begin() as conn:
            marked = conn.execute(
                _registrations.update()
                .where(
                    (_registrations.c.id == registration.id)
                    & (_registrations.c.is_active.is_(True))
                    & (_registrations.c.activated_at.is_(None))
                )
                .values(is_active=False, activated_at=stamp)
            )
            if marked.rowcount != 1:
                raise NotFound("Pending registration not found", op=op)
            result = conn.execute(
                _users.insert().values(
                    name=registration.name,
                    email=registration.email,
                    password_hash=registration.password_hash,
                    is_active=True,
                    is_admin=False,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            user_id = result.inserted_primary_key[0]
        self._logger.info("[%s] user %s created from registration %s", op, user_id, registration.id)
        return User(
            id=user_id,
            name=registration.name,
            email=registration.email,
            password_hash=registration.password_hash,
            is_active=True,
            is_admin=False,
            created_at=_parse(stamp),
            updated_at=_parse(stamp),
        )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user_by_email(self, email: str) -> User | None:
        """Look up a user by exact (already normalized) email. Returns None if not found."""
        with self._classified("User", "AuthStore.get_user_by_email"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self._classified("User", "AuthStore.get_user_by_id"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def set_user_last_login(self, user_id: int) -> None:
        """Stamp last_login_at. Runs detached from the request after login."""
        with self._classified("User", "AuthStore.set_user_last_login"), self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=_now_iso()))

    def set_user_admin(self, user_id: int, is_admin: bool) -> bool:
        """Toggle the admin flag. Returns False if user_id was not found."""
        with self._classified("User", "AuthStore.set_user_admin"), self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(is_admin=is_admin, updated_at=_now_iso())
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_session_by_refresh_token(self, refresh_token: str) -> Session | None:
        with self._classified("Session", "AuthStore.get_session_by_refresh_token"), self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.refresh_token == refresh_token)).fetchone()
        return _row_to_session(row) if row is not None else None

    def create_session_and_login(self, session: Session) -> int:
        """Insert a session and stamp the owner's last_login_at in one transaction."""
        op = "AuthStore.create_session_and_login"
        with self._classified("Session", op), self.engine.begin() as conn:
            result = conn.execute(_sessions.insert().values(**_session_values(session)))
            session.id = result.inserted_primary_key[0]
            conn.execute(_users.update().where(_users.c.id == session.user_id).values(last_login_at=_now_iso()))
        self._logger.info("[%s] session %s created for user %s", op, session.id, session.user_id)
        return session.id

    def rotate_session(self, old_refresh_token: str, new_session: Session) -> int:
        """Replace a session: delete the old row, insert the new one, stamp last_login_at.

        Raises NotFound (and rolls back) if the old refresh token no longer
        exists -- it was already rotated or revoked.
        """
        op = "AuthStore.rotate_session"
        with self._classified("Session", op), self.engine.begin() as conn:
            deleted = conn.execute(_sessions.delete().where(_sessions.c.refresh_token == old_refresh_token))
            if deleted.rowcount != 1:
                raise NotFound("Session not found", op=op)
            result = conn.execute(_sessions.insert().values(**_session_values(new_session)))
            new_session.id = result.inserted_primary_key[0]
            conn.execute(
                _users.update().where(_users.c.id == new_session.user_id).values(last_login_at=_now_iso())
            )
        self._logger.info("[%s] session rotated for user %s", op, new_session.user_id)
        return new_session.id

    def delete_session(self, refresh_token: str, user_id: int) -> bool:
        """Revoke a session. user_id must match the owner (IDOR guard).

        Returns True if a session was deleted, False if not found or wrong owner.
        """
        with self._classified("Session", "AuthStore.delete_session"), self.engine.begin() as conn:
            result = conn.execute(
                _sessions.delete().where(
                    (_sessions.c.refresh_token == refresh_token) & (_sessions.c.user_id == user_id)
                )
            )
        return result.rowcount > 0

    def count_sessions(self, user_id: int) -> int:
        with self._classified("Session", "AuthStore.count_sessions"), self.engine.connect() as conn:
            result = conn.execute(
                text("SELECT COUNT(*) FROM sessions WHERE user_id = :user_id"), {"user_id": user_id}
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            self._logger.error("[AuthStore.ping] database unreachable: %s", exc)
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _session_values(session: Session) -> dict:
    return {
        "user_id": session.user_id,
        "refresh_token": session.refresh_token,
        "user_agent": session.user_agent,
        "ip_address": session.ip_address,
        "expired_at": _iso(session.expired_at),
        "created_at": _iso(session.created_at),
    }


def _row_to_registration(row) -> Registration:
    return Registration(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=_parse(row.created_at),
        is_active=bool(row.is_active),
        expired_at=_parse(row.expired_at),
        activated_at=_parse(row.activated_at),
        token=row.token,
        verify_code=row.verify_code,
    )


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        is_active=bool(row.is_active),
        is_admin=bool(row.is_admin),
        last_login_at=_parse(row.last_login_at),
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        refresh_token=row.refresh_token,
        user_agent=row.user_agent,
        ip_address=row.ip_address,
        expired_at=_parse(row.expired_at),
        created_at=_parse(row.created_at),
    )
