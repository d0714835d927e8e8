"""
auth/permissions.py -- Static role -> permission table and authorization checks.

Each role's permission set is authored explicitly. Sets are NOT derived from a
role hierarchy: Moderator having ListUsers says nothing about User. Admin's
set happens to be every permission.

Roles travel inside the token payload, so none of these checks touch storage.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Mapping

from auth.errors import AuthorizationFailed
from auth.models import Role


class Permission(str, Enum):
    read_own_profile = "read:own_profile"
    update_own_profile = "update:own_profile"
    delete_own_account = "delete:own_account"
    read_any_profile = "read:any_profile"
    update_any_profile = "update:any_profile"
    delete_any_account = "delete:any_account"
    list_users = "list:users"
    manage_roles = "manage:roles"
    view_audit_log = "view:audit_log"


ROLE_PERMISSIONS: Mapping[Role, frozenset[Permission]] = MappingProxyType(
    {
        Role.guest: frozenset({Permission.read_own_profile}),
        Role.user: frozenset(
            {
                Permission.read_own_profile,
                Permission.update_own_profile,
                Permission.delete_own_account,
            }
        ),
        Role.moderator: frozenset(
            {
                Permission.read_own_profile,
                Permission.update_own_profile,
                Permission.delete_own_account,
                Permission.read_any_profile,
                Permission.list_users,
                Permission.view_audit_log,
            }
        ),
        Role.admin: frozenset(Permission),
    }
)


def _as_role(role: Role | str) -> Role | None:
    try:
        return Role(role)
    except ValueError:
        return None


def has_permission(role: Role | str, permission: Permission) -> bool:
    """Set-membership check. Unknown roles have no permissions."""
    resolved = _as_role(role)
    if resolved is None:
        return False
    return permission in ROLE_PERMISSIONS.get(resolved, frozenset())


def require_permission(role: Role | str, permission: Permission) -> None:
    """Guard: raise AuthorizationFailed unless role holds permission.

    Not a query. The caller's flow stops here on failure and the API layer
    renders a 403.
    """
    if not has_permission(role, permission):
        role_name = getattr(role, "value", role)
        raise AuthorizationFailed(
            "Forbidden",
            detail=f"Insufficient permissions: {permission.value} required, role {role_name} does not have it",
        )


def is_admin(role: Role | str) -> bool:
    return _as_role(role) is Role.admin
