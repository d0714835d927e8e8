"""Unit tests for auth/passwords.py -- argon2id PasswordHasher.

Covers:
- hash() output format: "<64 hex salt>:<128 hex key>"
- fresh salt per call (same password, different hashes)
- verify() accepts the right password and rejects a wrong one
- verify() returns False (never raises) on malformed stored values
"""

from __future__ import annotations

import re

import pytest

from auth.passwords import KEY_LENGTH, SALT_LENGTH, PasswordHasher

_STORED_RE = re.compile(r"^[0-9a-f]+:[0-9a-f]+$")


def test_hash_format(hasher: PasswordHasher) -> None:
    stored = hasher.hash("Abcdef12")
    assert _STORED_RE.match(stored)
    salt_hex, key_hex = stored.split(":")
    assert len(salt_hex) == SALT_LENGTH * 2
    assert len(key_hex) == KEY_LENGTH * 2


def test_same_password_hashes_differently(hasher: PasswordHasher) -> None:
    assert hasher.hash("Abcdef12") != hasher.hash("Abcdef12")


def test_verify_round_trip(hasher: PasswordHasher) -> None:
    stored = hasher.hash("Abcdef12")
    assert hasher.verify("Abcdef12", stored) is True
    assert hasher.verify("Abcdef13", stored) is False
    assert hasher.verify("", stored) is False


def test_verify_depends_on_cost_parameters(hasher: PasswordHasher) -> None:
    """A hash made with other cost parameters does not verify: the parameters are not stored."""
    other = PasswordHasher(time_cost=2, memory_cost=8, parallelism=1)
    assert other.verify("Abcdef12", hasher.hash("Abcdef12")) is False


@pytest.mark.parametrize(
    "stored",
    [
        "",
        "no-separator",
        ":",
        "abcd:",
        ":abcd",
        "zz" * SALT_LENGTH + ":" + "00" * KEY_LENGTH,
        "00" * SALT_LENGTH + ":" + "not-hex",
        "00" * 4 + ":" + "00" * KEY_LENGTH,
        "00" * SALT_LENGTH + ":" + "00" * 16,
    ],
)
def test_verify_malformed_returns_false(hasher: PasswordHasher, stored: str) -> None:
    assert hasher.verify("Abcdef12", stored) is False


def test_unicode_password(hasher: PasswordHasher) -> None:
    stored = hasher.hash("Pässwörd1")
    assert hasher.verify("Pässwörd1", stored) is True
    assert hasher.verify("Passwort1", stored) is False
