"""
tests/test_mailer.py -- LogMailer writes confirmations to the log.

The recipient is logged at INFO; the link and code only at DEBUG.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from auth.mailer import LogMailer
from auth.models import Registration


def _registration() -> Registration:
    now = datetime.now(timezone.utc)
    return Registration(
        name="Alice",
        email="alice@example.com",
        password_hash="x",
        ip_address="127.0.0.1",
        user_agent="pytest",
        created_at=now,
        expired_at=now + timedelta(hours=24),
        token="ab" * 32,
        verify_code="54321",
    )


def test_activation_link_uses_public_base_url() -> None:
    mailer = LogMailer("https://auth.example.com/")
    assert mailer.activation_link(_registration()) == f"https://auth.example.com/api/v1/auth/activate/{'ab' * 32}"


def test_info_log_omits_code(caplog) -> None:
    mailer = LogMailer("http://localhost:8000", logger=logging.getLogger("authgate.test.mailer"))
    with caplog.at_level(logging.INFO, logger="authgate.test.mailer"):
        mailer.send_confirmation(_registration())
    text = "\n".join(r.getMessage() for r in caplog.records)
    assert "alice@example.com" in text
    assert "54321" not in text


def test_debug_log_carries_link_and_code(caplog) -> None:
    mailer = LogMailer("http://localhost:8000", logger=logging.getLogger("authgate.test.mailer"))
    with caplog.at_level(logging.DEBUG, logger="authgate.test.mailer"):
        mailer.send_confirmation(_registration())
    debug = [r.getMessage() for r in caplog.records if r.levelno == logging.DEBUG]
    assert any("54321" in m and "/api/v1/auth/activate/" in m for m in debug)
