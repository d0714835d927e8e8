"""Unit tests for core/config.py -- Settings validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings


def test_defaults() -> None:
    settings = Settings(debug=True, secret_key="k" * 32)
    assert settings.access_token_ttl == 900
    assert settings.refresh_token_ttl == 604800
    assert settings.hash_time_cost == 3
    assert settings.hash_memory_cost == 65536
    assert settings.hash_parallelism == 4
    assert settings.login_rate_limit_attempts == 5
    assert settings.login_rate_limit_window_ms == 900_000
    assert settings.signup_rate_limit_attempts == 3
    assert settings.signup_rate_limit_window_ms == 3_600_000


def test_debug_generates_secret() -> None:
    settings = Settings(debug=True, secret_key="")
    assert len(settings.secret_key) >= 32


def test_production_requires_secret() -> None:
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="")


def test_short_secret_rejected() -> None:
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(debug=True, secret_key="too-short")


def test_refresh_must_outlive_access() -> None:
    with pytest.raises(ValidationError, match="REFRESH_TOKEN_TTL"):
        Settings(debug=True, secret_key="k" * 32, access_token_ttl=900, refresh_token_ttl=900)


def test_env_override(monkeypatch) -> None:
    monkeypatch.setenv("ACCESS_TOKEN_TTL", "300")
    monkeypatch.setenv("SECRET_KEY", "e" * 40)
    settings = Settings()
    assert settings.access_token_ttl == 300
    assert settings.secret_key == "e" * 40
