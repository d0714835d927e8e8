"""Unit tests for auth/permissions.py -- static role/permission table.

Covers:
- every role has an explicit entry
- exact permission sets per role (no implied hierarchy)
- has_permission() for unknown roles and string roles
- require_permission() raises AuthorizationFailed (403) with a detail
"""

from __future__ import annotations

import pytest

from auth.errors import AuthorizationFailed
from auth.models import Role
from auth.permissions import ROLE_PERMISSIONS, Permission, has_permission, is_admin, require_permission


def test_every_role_has_an_entry() -> None:
    assert set(ROLE_PERMISSIONS) == set(Role)


def test_admin_holds_every_permission() -> None:
    assert ROLE_PERMISSIONS[Role.admin] == frozenset(Permission)


def test_guest_can_only_read_own_profile() -> None:
    assert ROLE_PERMISSIONS[Role.guest] == {Permission.read_own_profile}


@pytest.mark.parametrize(
    ("role", "permission", "expected"),
    [
        (Role.user, Permission.update_own_profile, True),
        (Role.user, Permission.list_users, False),
        (Role.user, Permission.read_any_profile, False),
        (Role.moderator, Permission.list_users, True),
        (Role.moderator, Permission.view_audit_log, True),
        (Role.moderator, Permission.manage_roles, False),
        (Role.moderator, Permission.delete_any_account, False),
        (Role.guest, Permission.update_own_profile, False),
        (Role.admin, Permission.manage_roles, True),
    ],
)
def test_has_permission(role: Role, permission: Permission, expected: bool) -> None:
    assert has_permission(role, permission) is expected


def test_sets_are_not_derived_from_a_hierarchy() -> None:
    """Moderator lacks UpdateAnyProfile even though Admin has it."""
    assert has_permission(Role.admin, Permission.update_any_profile)
    assert not has_permission(Role.moderator, Permission.update_any_profile)


def test_string_and_unknown_roles() -> None:
    assert has_permission("moderator", Permission.list_users)
    assert not has_permission("superuser", Permission.read_own_profile)
    assert not is_admin("superuser")
    assert is_admin("admin")


def test_table_is_read_only() -> None:
    with pytest.raises(TypeError):
        ROLE_PERMISSIONS[Role.guest] = frozenset(Permission)  # type: ignore[index]


def test_require_permission() -> None:
    require_permission(Role.admin, Permission.manage_roles)
    with pytest.raises(AuthorizationFailed) as exc_info:
        require_permission(Role.user, Permission.list_users)
    assert exc_info.value.status_code == 403
    assert "list:users" in exc_info.value.detail
    assert "role user" in exc_info.value.detail
