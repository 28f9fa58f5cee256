"""
tests/test_config.py -- Settings validation in core/config.py.

Settings() is constructed directly (not through the cached get_settings())
with _env_file=None so a developer's local .env cannot leak into the tests.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from pydantic import ValidationError

from core.config import Settings

GOOD_KEY = "k" * 32


def test_debug_generates_secret_key() -> None:
    settings = Settings(_env_file=None, debug=True, secret_key="")
    assert len(settings.secret_key) >= 32


def test_production_requires_secret_key() -> None:
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(_env_file=None, debug=False, secret_key="")


def test_short_secret_key_rejected() -> None:
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(_env_file=None, debug=True, secret_key="too-short")


def test_defaults() -> None:
    settings = Settings(_env_file=None, secret_key=GOOD_KEY, auth_rate_limit="5/minute", bcrypt_rounds=10)
    assert settings.access_token_ttl == timedelta(hours=1)
    assert settings.refresh_token_ttl == timedelta(days=7)
    assert settings.registration_ttl == timedelta(hours=24)
    assert settings.resend_window == timedelta(minutes=15)
    assert settings.auth_rate_limit == "5/minute"
    assert settings.bcrypt_rounds == 10


def test_cors_origins_from_comma_separated_env(monkeypatch) -> None:
    monkeypatch.setenv("CORS_ORIGINS", "http://a.example, http://b.example")
    settings = Settings(_env_file=None, secret_key=GOOD_KEY)
    assert settings.cors_origins == ["http://a.example", "http://b.example"]


def test_empty_cors_origins_rejected(monkeypatch) -> None:
    monkeypatch.setenv("CORS_ORIGINS", " , ")
    with pytest.raises(ValidationError):
        Settings(_env_file=None, secret_key=GOOD_KEY)


@pytest.mark.parametrize("field, value", [("port", 0), ("bcrypt_rounds", 3), ("refresh_token_ttl_seconds", 0)])
def test_out_of_range_values_rejected(field: str, value: int) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, secret_key=GOOD_KEY, **{field: value})
