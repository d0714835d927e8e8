"""
auth/errors.py -- Error taxonomy for the auth service boundary.

Components (PasswordHasher, TokenService, SessionStore, RateLimiter) report
expected conditions as typed return values: False, None, a RateLimitDecision.
The gate and service layers turn those outcomes into the exceptions below,
and api/main.py maps every AuthError to the standard error envelope.

Authentication failures deliberately use generic messages. Internal logs may
record the real reason (unknown user vs wrong password); callers never see it.

require_permission() is the one component-level call that raises on purpose:
it guards code paths that must never proceed.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for errors that map to a client-visible HTTP outcome."""

    status_code: int = 400
    code: str = "validation_error"
    default_message: str = "Request failed."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class InvalidInput(AuthError):
    """Malformed credential or profile input. Caller-correctable (400)."""

    status_code = 400
    code = "validation_error"
    default_message = "Invalid input."


class AuthenticationFailed(AuthError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required"


class AuthenticationRequired(AuthenticationFailed):
    """No bearer credential, or a malformed Authorization header."""


class InvalidToken(AuthenticationFailed):
    code = "invalid_token"
    default_message = "Invalid or expired token"


class InvalidCredentials(AuthenticationFailed):
    """Wrong password or unknown user. The two are never distinguished."""

    code = "bad_credentials"
    default_message = "Invalid credentials"


class AuthorizationFailed(AuthError):
    """Valid identity, insufficient role or permission (403)."""

    status_code = 403
    code = "forbidden"
    default_message = "Forbidden"


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Not found."


class Conflict(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "Conflict."


class RateLimited(AuthError):
    """Too many attempts for one throttling key (429)."""

    status_code = 429
    code = "rate_limited"
    default_message = "Too many attempts. Try again later."

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after
