# libraryms/core/permissions.py

"""
Role -> permission table.

The table is fixed at import time and is the only place role checks live.
Callers ask ``has_permission`` instead of comparing roles, and every
service re-checks through ``require_permission`` regardless of what the
route or the client already checked.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, List, Optional, Union

from libraryms.core.errors import Forbidden
from libraryms.models.actor import Actor
from libraryms.models.enums import UserRole


class Permission(str, Enum):
    AddBook = "add_book"
    EditBook = "edit_book"
    DeleteBook = "delete_book"
    AddMember = "add_member"
    EditMember = "edit_member"
    DeleteMember = "delete_member"
    ViewReports = "view_reports"
    ManageSettings = "manage_settings"
    ViewBooks = "view_books"
    ViewMembers = "view_members"


def _names(*perms: Permission) -> FrozenSet[str]:
    return frozenset(p.value for p in perms)


ROLE_PERMISSIONS = MappingProxyType({
    UserRole.Librarian: _names(
        Permission.AddBook,
        Permission.EditBook,
        Permission.DeleteBook,
        Permission.AddMember,
        Permission.EditMember,
        Permission.DeleteMember,
        Permission.ViewReports,
        Permission.ManageSettings,
        Permission.ViewBooks,
        Permission.ViewMembers,
    ),
    UserRole.Faculty: _names(
        Permission.AddBook,
        Permission.EditBook,
        Permission.ViewReports,
        Permission.ViewBooks,
        Permission.ViewMembers,
    ),
    UserRole.Student: _names(Permission.ViewBooks, Permission.ViewMembers),
    UserRole.Public: _names(Permission.ViewBooks),
})

# Circulation and blacklist management are librarian-only
LIBRARIAN_TIER = Permission.DeleteMember


def _value(permission: Union[Permission, str]) -> str:
    if isinstance(permission, Permission):
        return permission.value
    return str(permission)


def permissions_for(role: Union[UserRole, str, None]) -> FrozenSet[str]:
    try:
        return ROLE_PERMISSIONS[UserRole(role)]
    except (ValueError, KeyError):
        return frozenset()


def has_permission(actor: Optional[Actor], permission: Union[Permission, str]) -> bool:
    # fail closed: no actor, unknown role, unknown permission
    if actor is None:
        return False
    return _value(permission) in permissions_for(actor.role)


def require_permission(
    actor: Optional[Actor],
    permission: Union[Permission, str],
    action: Optional[str] = None,
) -> Actor:
    if not has_permission(actor, permission):
        raise Forbidden(
            f"You don't have permission to {action}." if action
            else f"Missing permission '{_value(permission)}'."
        )
    return actor


# ----------------------------------------------------------------
# NAVIGATION
# ----------------------------------------------------------------
@dataclass(frozen=True)
class NavItem:
    id: str
    label: str
    permission: Optional[Permission] = None  # None: any signed-in actor


NAVIGATION = (
    NavItem("dashboard", "Dashboard"),
    NavItem("books", "Books", Permission.ViewBooks),
    NavItem("members", "Members", Permission.ViewMembers),
    NavItem("transactions", "Transactions", LIBRARIAN_TIER),
    NavItem("blacklist", "Blacklist", LIBRARIAN_TIER),
    NavItem("history", "My History"),
    NavItem("reports", "Reports", Permission.ViewReports),
    NavItem("settings", "Settings", Permission.ManageSettings),
)


def navigation_for(actor: Optional[Actor]) -> List[NavItem]:
    if actor is None:
        return []
    return [
        item for item in NAVIGATION
        if item.permission is None or has_permission(actor, item.permission)
    ]
