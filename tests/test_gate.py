"""Unit tests for auth/gate.py -- AuthGate request checks.

Covers:
- extract_bearer() header parsing
- authenticate(): missing header -> AuthenticationRequired, bad token -> InvalidToken
- try_authenticate() never raises
- authorize_roles() -> AuthorizationFailed for the wrong role
- authorize_permission() checks the role -> permission table
- throttle() -> RateLimited with retry_after, buckets keyed per address
"""

from __future__ import annotations

import pytest

from auth.errors import AuthenticationRequired, AuthorizationFailed, InvalidToken, RateLimited
from auth.gate import AuthGate, RateLimitRule, extract_bearer
from auth.models import Role, TokenKind
from auth.permissions import Permission
from auth.ratelimit import RateLimiter
from auth.tokens import TokenService


@pytest.fixture
def gate(tokens: TokenService, limiter: RateLimiter) -> AuthGate:
    return AuthGate(tokens, limiter, {"login": RateLimitRule(2, 900), "signup": RateLimitRule(1, 3600)})


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        (None, None),
        ("", None),
        ("Bearer", None),
        ("Bearer ", None),
        ("Basic abc", None),
        ("bearer abc", None),
        ("Bearer abc", "abc"),
        ("Bearer  abc ", "abc"),
    ],
)
def test_extract_bearer(header, expected) -> None:
    assert extract_bearer(header) == expected


def test_authenticate_valid(gate: AuthGate, tokens: TokenService) -> None:
    token = tokens.mint("user-1", "a@b.com", Role.moderator, TokenKind.access)
    payload = gate.authenticate(f"Bearer {token}")
    assert payload.sub == "user-1"
    assert payload.role == Role.moderator


def test_authenticate_missing(gate: AuthGate) -> None:
    with pytest.raises(AuthenticationRequired) as exc_info:
        gate.authenticate(None)
    assert exc_info.value.status_code == 401
    assert exc_info.value.message == "Authentication required"


def test_authenticate_invalid(gate: AuthGate, tokens: TokenService, clock) -> None:
    refresh = tokens.mint("user-1", "a@b.com", Role.user, TokenKind.refresh)
    with pytest.raises(InvalidToken):
        gate.authenticate(f"Bearer {refresh}")

    access = tokens.mint("user-1", "a@b.com", Role.user, TokenKind.access)
    clock.advance(tokens.access_ttl + 1)
    with pytest.raises(InvalidToken) as exc_info:
        gate.authenticate(f"Bearer {access}")
    assert exc_info.value.message == "Invalid or expired token"


def test_try_authenticate(gate: AuthGate, tokens: TokenService) -> None:
    assert gate.try_authenticate(None) is None
    assert gate.try_authenticate("Bearer garbage") is None
    token = tokens.mint("user-1", "a@b.com", Role.user, TokenKind.access)
    assert gate.try_authenticate(f"Bearer {token}").sub == "user-1"


def test_authorize_roles(gate: AuthGate, tokens: TokenService) -> None:
    payload = tokens.verify(tokens.mint("u", "a@b.com", Role.user, TokenKind.access), TokenKind.access)
    assert gate.authorize_roles(payload, [Role.user, Role.admin]) is payload
    assert gate.authorize_roles(payload, ["user"]) is payload
    with pytest.raises(AuthorizationFailed):
        gate.authorize_roles(payload, [Role.admin, Role.moderator])
    with pytest.raises(AuthenticationRequired):
        gate.authorize_roles(None, [Role.admin])


def test_throttle(gate: AuthGate) -> None:
    gate.throttle("login", "1.1.1.1")
    gate.throttle("login", "1.1.1.1")
    with pytest.raises(RateLimited) as exc_info:
        gate.throttle("login", "1.1.1.1")
    assert exc_info.value.status_code == 429
    assert exc_info.value.retry_after == 900
    # Other addresses and other buckets are unaffected.
    gate.throttle("login", "2.2.2.2")
    gate.throttle("signup", "1.1.1.1")


def test_throttle_unknown_bucket(gate: AuthGate) -> None:
    with pytest.raises(ValueError):
        gate.throttle("nope", "1.1.1.1")


def test_authorize_permission(gate: AuthGate, tokens: TokenService) -> None:
    moderator = tokens.verify(tokens.mint("m", "m@b.com", Role.moderator, TokenKind.access), TokenKind.access)
    assert gate.authorize_permission(moderator, Permission.view_audit_log) is moderator
    with pytest.raises(AuthorizationFailed) as exc_info:
        gate.authorize_permission(moderator, Permission.manage_roles)
    assert exc_info.value.status_code == 403
    with pytest.raises(AuthenticationRequired):
        gate.authorize_permission(None, Permission.read_own_profile)
