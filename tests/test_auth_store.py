"""
tests/test_auth_store.py -- Integration tests for AuthStore against SQLite.

Covers:
  - create_registration supersedes the previous live registration for an email
  - live-registration lookup ignores expired and activated rows
  - create_user_from_registration: one user per registration, atomic rollback
    on duplicate email (ConflictFailure), NotFound on a second activation
  - session create / rotate / delete, including owner checks on delete
  - rotate_session is single-use, also under concurrent callers
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from auth.models import Registration, Session
from auth.store import AuthStore
from auth.tokens import generate_opaque_token, generate_verify_code
from core.errors import AppError, ConflictFailure, NotFound


def _registration(email: str = "alice@example.com", now: datetime | None = None, **overrides) -> Registration:
    now = now or datetime.now(timezone.utc)
    fields = dict(
        name="Alice",
        email=email,
        password_hash="$2b$04$placeholder",
        ip_address="127.0.0.1",
        user_agent="pytest",
        created_at=now,
        expired_at=now + timedelta(hours=24),
        token=generate_opaque_token(),
        verify_code=generate_verify_code(),
    )
    fields.update(overrides)
    return Registration(**fields)


def _session(user_id: int, now: datetime | None = None) -> Session:
    now = now or datetime.now(timezone.utc)
    return Session(
        user_id=user_id,
        refresh_token=generate_opaque_token(),
        user_agent="pytest",
        ip_address="127.0.0.1",
        expired_at=now + timedelta(days=7),
        created_at=now,
    )


def _activated_user_id(store: AuthStore, email: str = "alice@example.com") -> int:
    reg = _registration(email)
    store.create_registration(reg)
    return store.create_user_from_registration(reg, datetime.now(timezone.utc)).id


class TestRegistrations:
    def test_create_and_fetch_by_token(self, store: AuthStore) -> None:
        reg = _registration()
        reg_id = store.create_registration(reg)
        fetched = store.get_registration_by_token(reg.token)
        assert fetched is not None
        assert fetched.id == reg_id
        assert fetched.email == "alice@example.com"
        assert fetched.verify_code == reg.verify_code
        assert fetched.is_active is True
        assert fetched.activated_at is None
        assert fetched.expired_at == reg.expired_at

    def test_unknown_token_returns_none(self, store: AuthStore) -> None:
        assert store.get_registration_by_token(generate_opaque_token()) is None

    def test_new_registration_supersedes_live_one(self, store: AuthStore) -> None:
        now = datetime.now(timezone.utc)
        first = _registration(now=now)
        second = _registration(now=now + timedelta(minutes=20))
        store.create_registration(first)
        store.create_registration(second)

        assert store.count_live_registrations("alice@example.com", now) == 1
        live = store.get_live_registration_by_email("alice@example.com", now)
        assert live is not None and live.token == second.token
        superseded = store.get_registration_by_token(first.token)
        assert superseded.is_active is False
        assert superseded.activated_at is None

    def test_expired_registration_is_not_live(self, store: AuthStore) -> None:
        now = datetime.now(timezone.utc)
        store.create_registration(_registration(now=now))
        assert store.get_live_registration_by_email("alice@example.com", now + timedelta(hours=25)) is None

    def test_other_emails_are_untouched(self, store: AuthStore) -> None:
        now = datetime.now(timezone.utc)
        store.create_registration(_registration("alice@example.com", now=now))
        store.create_registration(_registration("bob@example.com", now=now))
        assert store.count_live_registrations("alice@example.com", now) == 1
        assert store.count_live_registrations("bob@example.com", now) == 1


class TestActivation:
    def test_creates_user_and_marks_registration(self, store: AuthStore) -> None:
        now = datetime.now(timezone.utc)
        reg = _registration(now=now)
        store.create_registration(reg)

        user = store.create_user_from_registration(reg, now)

        assert user.id is not None
        assert user.email == reg.email
        assert user.password_hash == reg.password_hash
        assert user.is_active is True
        assert user.is_admin is False
        marked = store.get_registration_by_token(reg.token)
        assert marked.is_active is False
        assert marked.activated_at == now
        assert store.get_user_by_email("alice@example.com").id == user.id

    def test_second_activation_raises_not_found(self, store: AuthStore) -> None:
        now = datetime.now(timezone.utc)
        reg = _registration(now=now)
        store.create_registration(reg)
        store.create_user_from_registration(reg, now)

        with pytest.raises(NotFound):
            store.create_user_from_registration(reg, now)

    def test_duplicate_email_rolls_back(self, store: AuthStore) -> None:
        now = datetime.now(timezone.utc)
        first = _registration(now=now)
        store.create_registration(first)
        store.create_user_from_registration(first, now)
        second = _registration(now=now)
        store.create_registration(second)

        with pytest.raises(ConflictFailure):
            store.create_user_from_registration(second, now)

        # The registration UPDATE was rolled back with the failed INSERT.
        still_pending = store.get_registration_by_token(second.token)
        assert still_pending.is_active is True
        assert still_pending.activated_at is None


class TestUsers:
    def test_lookups_return_none_when_absent(self, store: AuthStore) -> None:
        assert store.get_user_by_email("nobody@example.com") is None
        assert store.get_user_by_id(999) is None

    def test_set_user_admin(self, store: AuthStore) -> None:
        user_id = _activated_user_id(store)
        assert store.set_user_admin(user_id, True) is True
        assert store.get_user_by_id(user_id).is_admin is True
        assert store.set_user_admin(999, True) is False

    def test_set_user_last_login(self, store: AuthStore) -> None:
        user_id = _activated_user_id(store)
        assert store.get_user_by_id(user_id).last_login_at is None
        store.set_user_last_login(user_id)
        assert store.get_user_by_id(user_id).last_login_at is not None


class TestSessions:
    def test_create_session_stamps_last_login(self, store: AuthStore) -> None:
        user_id = _activated_user_id(store)
        session = _session(user_id)
        session_id = store.create_session_and_login(session)

        fetched = store.get_session_by_refresh_token(session.refresh_token)
        assert fetched.id == session_id
        assert fetched.user_id == user_id
        assert fetched.expired_at == session.expired_at
        assert store.get_user_by_id(user_id).last_login_at is not None

    def test_rotate_replaces_session(self, store: AuthStore) -> None:
        user_id = _activated_user_id(store)
        old = _session(user_id)
        store.create_session_and_login(old)
        new = _session(user_id)

        store.rotate_session(old.refresh_token, new)

        assert store.get_session_by_refresh_token(old.refresh_token) is None
        assert store.get_session_by_refresh_token(new.refresh_token) is not None
        assert store.count_sessions(user_id) == 1

    def test_rotate_unknown_token_raises_not_found_and_inserts_nothing(self, store: AuthStore) -> None:
        user_id = _activated_user_id(store)
        replacement = _session(user_id)
        with pytest.raises(NotFound):
            store.rotate_session(generate_opaque_token(), replacement)
        assert store.get_session_by_refresh_token(replacement.refresh_token) is None

    def test_concurrent_rotation_has_one_winner(self, store: AuthStore) -> None:
        user_id = _activated_user_id(store)
        old = _session(user_id)
        store.create_session_and_login(old)

        barrier = threading.Barrier(4)
        wins: list[str] = []
        losses: list[Exception] = []

        def attempt() -> None:
            replacement = _session(user_id)
            barrier.wait()
            try:
                store.rotate_session(old.refresh_token, replacement)
                wins.append(replacement.refresh_token)
            except AppError as exc:
                losses.append(exc)

        threads = [threading.Thread(target=attempt) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(wins) == 1
        assert len(losses) == 3
        assert store.count_sessions(user_id) == 1
        assert store.get_session_by_refresh_token(wins[0]) is not None

    def test_delete_session_checks_owner(self, store: AuthStore) -> None:
        alice = _activated_user_id(store, "alice@example.com")
        bob = _activated_user_id(store, "bob@example.com")
        session = _session(alice)
        store.create_session_and_login(session)

        assert store.delete_session(session.refresh_token, bob) is False
        assert store.get_session_by_refresh_token(session.refresh_token) is not None
        assert store.delete_session(session.refresh_token, alice) is True
        assert store.get_session_by_refresh_token(session.refresh_token) is None


def test_ping(store: AuthStore) -> None:
    assert store.ping() is True
