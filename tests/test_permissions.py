import uuid

import pytest

from libraryms.core.errors import Forbidden
from libraryms.core.permissions import (
    Permission,
    has_permission,
    navigation_for,
    permissions_for,
    require_permission,
)
from libraryms.models.actor import Actor
from libraryms.models.enums import UserRole

ALL = {p.value for p in Permission}

EXPECTED = {
    UserRole.Librarian: ALL,
    UserRole.Faculty: {"add_book", "edit_book", "view_reports", "view_books", "view_members"},
    UserRole.Student: {"view_books", "view_members"},
    UserRole.Public: {"view_books"},
}


def actor(role):
    return Actor(id=uuid.uuid4(), email=f"{role.value}@library.edu", display_name="Someone", role=role)


@pytest.mark.parametrize("role", list(UserRole))
def test_table_matches_exactly(role):
    assert set(permissions_for(role)) == EXPECTED[role]
    for permission in Permission:
        assert has_permission(actor(role), permission) is (permission.value in EXPECTED[role])
        # plain strings behave the same as the enum
        assert has_permission(actor(role), permission.value) is (permission.value in EXPECTED[role])


@pytest.mark.parametrize("role", list(UserRole))
def test_unknown_permission_fails_closed(role):
    assert has_permission(actor(role), "launch_rockets") is False
    assert has_permission(actor(role), "") is False
    assert has_permission(actor(role), "VIEW_BOOKS") is False


def test_no_actor_has_nothing():
    for permission in Permission:
        assert has_permission(None, permission) is False
    assert navigation_for(None) == []


def test_unknown_role_has_nothing():
    assert permissions_for("janitor") == frozenset()
    assert permissions_for(None) == frozenset()


def test_table_is_read_only():
    from libraryms.core.permissions import ROLE_PERMISSIONS

    with pytest.raises(TypeError):
        ROLE_PERMISSIONS[UserRole.Public] = frozenset(ALL)
    with pytest.raises(AttributeError):
        ROLE_PERMISSIONS[UserRole.Public].add("delete_book")


def test_require_permission_raises_forbidden():
    student = actor(UserRole.Student)
    assert require_permission(student, Permission.ViewBooks) is student

    with pytest.raises(Forbidden) as exc:
        require_permission(student, Permission.AddBook, "add books")
    assert exc.value.detail == "You don't have permission to add books."
    assert exc.value.status_code == 403


def test_navigation_follows_permissions():
    ids = lambda role: [item.id for item in navigation_for(actor(role))]

    assert ids(UserRole.Librarian) == [
        "dashboard", "books", "members", "transactions", "blacklist", "history", "reports", "settings",
    ]
    assert ids(UserRole.Faculty) == ["dashboard", "books", "members", "history", "reports"]
    assert ids(UserRole.Student) == ["dashboard", "books", "members", "history"]
    assert ids(UserRole.Public) == ["dashboard", "books", "history"]
