"""
tests/conftest.py -- Shared test fixtures for authgate.

This module provides:
  - Recording fakes for the injected collaborators (mailer, worker, hasher, clock)
  - store / service: an AuthService over a fresh file-backed SQLite AuthStore
  - create_user: register + activate helper returning the new User
  - api: TestClient over the real FastAPI app with a patched lifespan

Design: each store lives in a SQLite file under pytest's tmp directory rather
than an in-memory database. TestClient runs sync route handlers in a thread
pool and the store is exercised from several threads in the concurrency tests;
a file database with WAL gives every connection the same schema and real
locking semantics.

Environment variables must be set before any api/ or core/ import so
get_settings() sees them: DEBUG auto-generates SECRET_KEY, a high
AUTH_RATE_LIMIT keeps the per-IP limiter out of the way of ordinary tests.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any api/core import so get_settings() picks them up.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("AUTH_RATE_LIMIT", "1000/minute")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.guard import AccessGuard
from auth.models import Registration, User
from auth.passwords import BcryptHasher
from auth.service import AuthService
from auth.store import AuthStore
from auth.tokens import TokenCodec

TEST_SECRET = "test-secret-key-that-is-at-least-32-chars"

# bcrypt's minimum work factor. Hashing is the slowest thing in the suite.
_FAST_HASHER = BcryptHasher(rounds=4)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class RecordingMailer:
    """Mailer that keeps every confirmation instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[Registration] = []

    def send_confirmation(self, registration: Registration) -> None:
        self.sent.append(registration)

    def last_for(self, email: str) -> Registration:
        matches = [r for r in self.sent if r.email == email]
        assert matches, f"no confirmation sent to {email}"
        return matches[-1]


class InlineWorker:
    """Runs submitted work immediately. Failures are recorded, not raised,
    mirroring BackgroundWorker's contract that detached work never fails the caller."""

    def __init__(self) -> None:
        self.ops: list[str] = []
        self.errors: list[tuple[str, Exception]] = []

    def submit(self, op, fn, *args, **kwargs):
        self.ops.append(op)
        try:
            fn(*args, **kwargs)
        except Exception as exc:
            self.errors.append((op, exc))
        return None


class CountingHasher:
    """Wraps a real BcryptHasher and records which hashes verify() was given."""

    def __init__(self, inner: BcryptHasher) -> None:
        self.inner = inner
        self.dummy_hash = inner.dummy_hash
        self.verified_against: list[str] = []

    def hash(self, plaintext: str) -> str:
        return self.inner.hash(plaintext)

    def verify(self, plaintext: str, hashed: str) -> bool:
        self.verified_against.append(hashed)
        return self.inner.verify(plaintext, hashed)


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_path) -> Generator[AuthStore, None, None]:
    s = AuthStore(db_url=f"sqlite:///{tmp_path / 'auth.db'}")
    yield s
    s.close()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def worker() -> InlineWorker:
    return InlineWorker()


@pytest.fixture
def hasher() -> CountingHasher:
    return CountingHasher(_FAST_HASHER)


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(TEST_SECRET)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(store, hasher, codec, mailer, worker, clock) -> AuthService:
    return AuthService(
        store=store,
        hasher=hasher,
        codec=codec,
        mailer=mailer,
        worker=worker,
        clock=clock,
    )


@pytest.fixture
def create_user(service: AuthService, mailer: RecordingMailer):
    """Return a helper that registers and activates an account, returning the User."""

    def _create(email: str = "alice@example.com", password: str = "hunter22", name: str = "Alice") -> User:
        service.register(name, email, password, "127.0.0.1", "pytest")
        pending = mailer.last_for(email.strip().lower())
        return service.activate(pending.token, pending.verify_code)

    return _create


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    store: AuthStore
    service: AuthService
    mailer: RecordingMailer

    def signup(self, email: str, password: str = "hunter22", name: str = "Test User") -> dict:
        """Register and activate through the HTTP API. Returns the activated user payload."""
        resp = self.client.post("/api/v1/auth/register", json={"name": name, "email": email, "password": password})
        assert resp.status_code == 200, resp.text
        pending = self.mailer.last_for(email)
        resp = self.client.post(f"/api/v1/auth/activate/{pending.token}", json={"code": pending.verify_code})
        assert resp.status_code == 200, resp.text
        return resp.json()["result"]

    def login(self, email: str, password: str = "hunter22") -> dict:
        resp = self.client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()["result"]


def _patch_lifespan(store: AuthStore, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test store and service into app.state so TestClient
    routes use an isolated database and recording fakes.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_store = store
        app.state.auth_service = service
        app.state.guard = AccessGuard(service)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api(tmp_path_factory) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness for HTTP integration tests.

    One TestClient per test module for speed; tests use distinct emails so
    they do not interfere with each other.
    """
    db_path = tmp_path_factory.mktemp("api") / "auth.db"
    store = AuthStore(db_url=f"sqlite:///{db_path}")
    mailer = RecordingMailer()
    service = AuthService(
        store=store,
        hasher=_FAST_HASHER,
        codec=TokenCodec(TEST_SECRET),
        mailer=mailer,
        worker=InlineWorker(),
    )

    app.router.lifespan_context = _patch_lifespan(store, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, store=store, service=service, mailer=mailer)

    store.close()
