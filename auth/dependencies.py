"""
auth/dependencies.py -- FastAPI Depends() helpers around AuthGate.

try_get_current_payload() is the soft variant (returns None on failure).
get_current_payload() requires a valid access token (401 otherwise).
require_roles(...) wraps get_current_payload() and adds the role gate (403).
permission_required(p) does the same against the role -> permission table.
rate_limit(bucket) throttles by client address before the route body runs.
get_client_info() and get_auth_service() hand route bodies their collaborators.

Every helper raises AuthError subclasses; api/main.py renders them. The
verified payload is also stored on request.state.token_payload so middleware
and handlers see the same identity.

Layer rule: no imports from api/. This module may import from fastapi and
slowapi because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request
from slowapi.util import get_remote_address

from auth.gate import AuthGate
from auth.models import Role, TokenPayload
from auth.permissions import Permission
from auth.service import AuthService, ClientInfo


def _gate(request: Request) -> AuthGate:
    return request.app.state.gate


def try_get_current_payload(request: Request) -> TokenPayload | None:
    """Attach the payload when a valid Bearer token is present. Never raises."""
    payload = _gate(request).try_authenticate(request.headers.get("Authorization"))
    request.state.token_payload = payload
    return payload


def get_current_payload(request: Request) -> TokenPayload:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(payload: TokenPayload = Depends(get_current_payload)): ...
    """
    payload = _gate(request).authenticate(
        request.headers.get("Authorization"),
        address=get_remote_address(request),
    )
    request.state.token_payload = payload
    return payload


def require_roles(*roles: Role) -> Callable[..., TokenPayload]:
    """Build a dependency that allows only the listed roles.

    Use as a FastAPI dependency:
        @router.get("/users")
        async def route(payload: TokenPayload = Depends(require_roles(Role.admin, Role.moderator))): ...
    """

    def dependency(request: Request, payload: TokenPayload = Depends(get_current_payload)) -> TokenPayload:
        return _gate(request).authorize_roles(payload, roles)

    return dependency


def rate_limit(bucket: str) -> Callable[[Request], None]:
    """Build a dependency that counts one attempt for bucket per client address."""

    def dependency(request: Request) -> None:
        _gate(request).throttle(bucket, get_remote_address(request))

    return dependency


def get_client_info(request: Request) -> ClientInfo:
    """Client address and User-Agent for session rows and audit entries."""
    return ClientInfo(
        ip_address=get_remote_address(request) or "unknown",
        user_agent=request.headers.get("User-Agent") or "unknown",
    )


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def permission_required(permission: Permission) -> Callable[..., TokenPayload]:
    """Build a dependency that allows only roles holding permission.

    Use as a FastAPI dependency:
        @router.get("/audit-log")
        async def route(payload: TokenPayload = Depends(permission_required(Permission.view_audit_log))): ...
    """

    def dependency(request: Request, payload: TokenPayload = Depends(get_current_payload)) -> TokenPayload:
        return _gate(request).authorize_permission(payload, permission)

    return dependency
