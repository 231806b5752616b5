"""
Unit tests for permission-scoped filtering and role capabilities.
"""

import pytest

from models import Budget, Role, User
from permissions import (
    can_access_user_data,
    filter_by_user_permissions,
    get_effective_user_id,
    get_selectable_users,
)


@pytest.fixture
def items():
    return [
        Budget(id="b1", description="Mine", amount=10, categories={"a"}, user_id="u1"),
        Budget(id="b2", description="Theirs", amount=10, categories={"a"}, user_id="other-user"),
        Budget(id="b3", description="Also mine", amount=10, categories={"a"}, user_id="u1"),
    ]


class TestRoleCapabilities:
    """Tests for role predicates."""

    @pytest.mark.parametrize("role, expected", [
        (Role.MEMBER, False),
        (Role.ADMIN, True),
        (Role.SUPERADMIN, True),
    ])
    def test_capabilities(self, role, expected):
        assert role.can_view_all() is expected
        assert role.can_manage_others() is expected

    def test_role_coerced_from_string(self):
        assert User(id="x", name="X", role="Admin").role is Role.ADMIN


class TestFilterByUserPermissions:
    """Tests for the single permission gate."""

    def test_member_sees_own_even_when_selecting_other(self, items, member):
        visible = filter_by_user_permissions(items, member, "other-user")
        assert [item.id for item in visible] == ["b1", "b3"]

    @pytest.mark.parametrize("selected", [None, "all", "u1"])
    def test_member_always_narrowed(self, items, member, selected):
        assert {item.user_id for item in filter_by_user_permissions(items, member, selected)} == {"u1"}

    @pytest.mark.parametrize("selected", [None, "", "all"])
    def test_admin_sees_everything(self, items, admin, selected):
        assert len(filter_by_user_permissions(items, admin, selected)) == 3

    def test_admin_can_select_user(self, items, admin):
        visible = filter_by_user_permissions(items, admin, "other-user")
        assert [item.id for item in visible] == ["b2"]

    def test_custom_all_sentinel(self, items, admin):
        assert len(filter_by_user_permissions(items, admin, "*", all_sentinel="*")) == 3

    def test_returns_new_list(self, items, admin):
        visible = filter_by_user_permissions(items, admin)
        assert visible == items
        assert visible is not items

    def test_effective_user_id(self, member, admin):
        assert get_effective_user_id(member, "other-user") == "u1"
        assert get_effective_user_id(admin, "all") is None
        assert get_effective_user_id(admin, "u2") == "u2"


class TestAccessHelpers:
    """Tests for access checks and selectable users."""

    def test_can_access_user_data(self, member, admin):
        assert can_access_user_data(member, "u1")
        assert not can_access_user_data(member, "u2")
        assert can_access_user_data(admin, "u2")

    def test_selectable_users(self, member, other_member, admin):
        outsider = User(id="z", name="Zed", group_id="g2")
        users = [member, other_member, admin, outsider]
        assert get_selectable_users(member, users) == [member]
        assert get_selectable_users(admin, users) == [member, other_member, admin]
