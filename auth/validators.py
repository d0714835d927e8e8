"""
auth/validators.py -- Credential and profile input rules.

Each validator returns an error message for the caller, or None when the
value is acceptable. AuthService raises InvalidInput with the message; the
messages are specific because input mistakes are caller-correctable and do
not reveal anything about existing accounts.
"""

from __future__ import annotations

import re

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
USERNAME_RE = re.compile(r"^[a-zA-Z0-9_-]{3,30}$")
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
MAX_EMAIL_LENGTH = 254


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def validate_email(email: str | None) -> str | None:
    normalized = normalize_email(email)
    if not normalized:
        return "Email is required"
    if len(normalized) > MAX_EMAIL_LENGTH:
        return "Email is too long"
    if not EMAIL_RE.match(normalized):
        return "Invalid email format"
    return None


def validate_password(password: str | None) -> str | None:
    if not password:
        return "Password is required"
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if len(password) > MAX_PASSWORD_LENGTH:
        return f"Password must be at most {MAX_PASSWORD_LENGTH} characters"
    if not re.search(r"[A-Z]", password):
        return "Password must contain an uppercase letter"
    if not re.search(r"[a-z]", password):
        return "Password must contain a lowercase letter"
    if not re.search(r"[0-9]", password):
        return "Password must contain a digit"
    return None


def validate_username(username: str | None) -> str | None:
    trimmed = (username or "").strip()
    if not trimmed:
        return "Username is required"
    if not USERNAME_RE.match(trimmed):
        return "Username must be 3-30 characters, alphanumeric with _ and -"
    return None
