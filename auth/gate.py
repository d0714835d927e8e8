"""
auth/gate.py -- Authentication / authorization gate for inbound calls.

Per-call state machine:

    Unauthenticated --(no / malformed "Authorization: Bearer <token>")--> 401 Authentication required
         |
    TokenPresented  --(TokenService.verify(kind=access) is None)------> 401 Invalid or expired token
         |
    Authenticated   -- TokenPayload attached to the call context
         |
    RoleGate (optional) --(payload.role not in required roles)--------> 403 Forbidden
    PermissionGate (optional) --(role lacks the permission)-----------> 403 Forbidden
         |
    handler

try_authenticate() is the optional-auth variant: it attaches a payload when a
valid token is present and never rejects the call.

throttle() applies a named RateLimitRule to a client address. It runs before
any password work on credential endpoints.

The gate is framework-agnostic: it takes header values and addresses, and
raises AuthError subclasses. auth/dependencies.py adapts it to FastAPI.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

from auth.errors import AuthenticationRequired, AuthorizationFailed, InvalidToken, RateLimited
from auth.models import Role, TokenKind, TokenPayload
from auth.permissions import Permission, require_permission
from auth.ratelimit import RateLimitDecision, RateLimiter
from auth.tokens import TokenService

logger = logging.getLogger("tenantauth.auth.gate")

_BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class RateLimitRule:
    max_attempts: int
    window_seconds: float


def extract_bearer(authorization: str | None) -> str | None:
    """Return the token from an "Authorization: Bearer <token>" header value, else None."""
    if not authorization or not authorization.startswith(_BEARER_PREFIX):
        return None
    token = authorization[len(_BEARER_PREFIX):].strip()
    return token or None


class AuthGate:
    """Composes TokenService + RateLimiter + the permission table for request handling.

    Usage:
        gate = AuthGate(tokens, limiter, {"login": RateLimitRule(5, 900)})
        gate.throttle("login", client_ip)
        payload = gate.authenticate(request.headers.get("Authorization"))
        gate.authorize_roles(payload, {Role.admin, Role.moderator})
    """

    def __init__(
        self,
        tokens: TokenService,
        rate_limiter: RateLimiter,
        rules: Mapping[str, RateLimitRule] | None = None,
    ) -> None:
        self._tokens = tokens
        self._limiter = rate_limiter
        self._rules = dict(rules or {})

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate(self, authorization: str | None, address: str = "unknown") -> TokenPayload:
        """Return the verified access-token payload or raise a 401-class error."""
        token = extract_bearer(authorization)
        if token is None:
            raise AuthenticationRequired()
        payload = self._tokens.verify(token, TokenKind.access)
        if payload is None:
            # decode() is introspection only: it names the claimed subject in
            # the log line, it does not grant anything.
            claimed = self._tokens.decode(token)
            logger.warning(
                "Invalid token presented ip=%s claimed_sub=%s",
                address,
                claimed.sub if claimed else "-",
            )
            raise InvalidToken()
        return payload

    def try_authenticate(self, authorization: str | None) -> TokenPayload | None:
        """Optional auth: the payload for a valid bearer token, None otherwise. Never raises."""
        token = extract_bearer(authorization)
        if token is None:
            return None
        return self._tokens.verify(token, TokenKind.access)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def authorize_roles(self, payload: TokenPayload | None, roles: Iterable[Role | str]) -> TokenPayload:
        """Role gate: allow iff payload.role is one of roles."""
        if payload is None:
            raise AuthenticationRequired()
        allowed = {Role(r) for r in roles}
        if payload.role not in allowed:
            logger.warning(
                "Insufficient role user_id=%s required=%s actual=%s",
                payload.sub,
                sorted(r.value for r in allowed),
                payload.role.value,
            )
            raise AuthorizationFailed()
        return payload

    def authorize_permission(self, payload: TokenPayload | None, permission: Permission) -> TokenPayload:
        """Permission gate: allow iff payload.role holds permission in the static table."""
        if payload is None:
            raise AuthenticationRequired()
        try:
            require_permission(payload.role, permission)
        except AuthorizationFailed:
            logger.warning(
                "Missing permission user_id=%s required=%s role=%s",
                payload.sub,
                permission.value,
                payload.role.value,
            )
            raise
        return payload

    # ------------------------------------------------------------------
    # Throttling
    # ------------------------------------------------------------------

    def rule(self, bucket: str) -> RateLimitRule:
        try:
            return self._rules[bucket]
        except KeyError:
            raise ValueError(f"No rate limit rule configured for {bucket!r}") from None

    def throttle(self, bucket: str, address: str) -> RateLimitDecision:
        """Count an attempt against bucket for address; raise RateLimited when blocked."""
        rule = self.rule(bucket)
        decision = self._limiter.check(f"{bucket}:{address}", rule.max_attempts, rule.window_seconds)
        if not decision.allowed:
            raise RateLimited(retry_after=decision.retry_after)
        return decision
