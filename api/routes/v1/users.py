"""
api/routes/v1/users.py -- Profile and user administration REST endpoints.

Routes:
  GET    /api/v1/users/me              -- caller's profile (requires auth)
  PUT    /api/v1/users/me              -- update caller's email/username (requires auth)
  DELETE /api/v1/users/me              -- delete caller's account and sessions (requires auth)
  PUT    /api/v1/users/me/password     -- change password (requires auth + current password)
  GET    /api/v1/users                 -- paginated user list (Admin|Moderator)
  GET    /api/v1/users/{id}            -- any user's profile (Admin|Moderator)
  PATCH  /api/v1/users/{id}/role       -- change a user's role (Admin, ManageRoles)
  GET    /api/v1/audit-log             -- recent audit entries (ViewAuditLog)

Two layers guard the admin routes: require_roles() or permission_required()
rejects the caller before the handler runs, and AuthService re-checks the
specific permission. Role changes refuse self-demotion and demoting the last
active admin.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from api.models import (
    AuditEntryResponse,
    ChangePasswordRequest,
    MessageResponse,
    ProfileUpdate,
    RoleUpdate,
    UserPageResponse,
    UserResponse,
)
from auth.dependencies import (
    get_auth_service,
    get_client_info,
    get_current_payload,
    permission_required,
    require_roles,
)
from auth.models import AuditAction, Role, TokenPayload
from auth.permissions import Permission
from auth.service import AuthService, ClientInfo

# Auth policy:
# - /users/me*:            requires auth (get_current_payload), own-profile permissions
# - GET /users, /users/{id}: Admin or Moderator (require_roles) + ListUsers / ReadAnyProfile
# - PATCH /users/{id}/role: ManageRoles (permission_required), Admin only
# - GET /audit-log:         ViewAuditLog (permission_required)
router = APIRouter()

_staff = require_roles(Role.admin, Role.moderator)
_manage_roles = permission_required(Permission.manage_roles)
_view_audit = permission_required(Permission.view_audit_log)


# ---------------------------------------------------------------------------
# Own profile
# ---------------------------------------------------------------------------


@router.get("/users/me", response_model=UserResponse)
def get_me(
    payload: TokenPayload = Depends(get_current_payload),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    return UserResponse.from_user(service.get_profile(payload))


@router.put("/users/me", response_model=UserResponse)
def update_me(
    body: ProfileUpdate,
    payload: TokenPayload = Depends(get_current_payload),
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
) -> UserResponse:
    """Update email and/or username. Omitted fields are left unchanged."""
    user = service.update_profile(payload, email=body.email, username=body.username, client=client)
    return UserResponse.from_user(user)


@router.delete("/users/me", status_code=204)
def delete_me(
    payload: TokenPayload = Depends(get_current_payload),
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
) -> Response:
    """Delete the caller's account. Every session ends with it."""
    service.delete_account(payload, client=client)
    return Response(status_code=204)


@router.put("/users/me/password", response_model=MessageResponse)
def change_password(
    body: ChangePasswordRequest,
    payload: TokenPayload = Depends(get_current_payload),
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
) -> MessageResponse:
    service.change_password(payload, body.current_password, body.new_password, client=client)
    return MessageResponse(message="Password updated.")


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


@router.get("/users", response_model=UserPageResponse)
def list_users(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100, alias="pageSize"),
    payload: TokenPayload = Depends(_staff),
    service: AuthService = Depends(get_auth_service),
) -> UserPageResponse:
    """List users, newest first."""
    return UserPageResponse.from_page(service.list_users(payload, page=page, page_size=page_size))


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    user_id: str,
    payload: TokenPayload = Depends(_staff),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    return UserResponse.from_user(service.get_user(payload, user_id))


@router.patch("/users/{user_id}/role", response_model=UserResponse)
def change_role(
    user_id: str,
    body: RoleUpdate,
    payload: TokenPayload = Depends(_manage_roles),
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
) -> UserResponse:
    """Assign a new role. The target's sessions are ended so the old role cannot be refreshed."""
    return UserResponse.from_user(service.change_role(payload, user_id, body.role, client=client))


@router.get("/audit-log", response_model=list[AuditEntryResponse])
def audit_log(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    action: Optional[AuditAction] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    payload: TokenPayload = Depends(_view_audit),
    service: AuthService = Depends(get_auth_service),
) -> list[AuditEntryResponse]:
    """Recent audit entries, newest first, optionally filtered by user and action."""
    entries = service.audit_log(payload, user_id=user_id, action=action, limit=limit)
    return [AuditEntryResponse.from_entry(e) for e in entries]
