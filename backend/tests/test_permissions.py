"""Tests for the typed role policy and acting-role resolution."""

import pytest

from app.core.deps import CurrentUser, finance_scope
from app.core.exceptions import AuthorizationError
from app.core.permissions import Grant, Permission, Role, can, default_role, grant_for, parse_role
from app.models.user import User


class TestPolicy:

    def test_finance_and_admin_can_edit(self):
        for role in (Role.ADMIN, Role.FINANCE):
            assert can(role, Permission.FINANCE_EDIT)
            assert can(role, Permission.FINANCE_VIEW)

    def test_other_roles_cannot_touch_finance(self):
        for role in (Role.PM, Role.SALES, Role.TRANSLATOR, Role.REVIEWER, Role.LAYOUT):
            assert not can(role, Permission.FINANCE_EDIT)
            assert not can(role, Permission.FINANCE_VIEW)

    def test_scoped_grants(self):
        assert grant_for(Role.SALES, Permission.PROJECT_VIEW) is Grant.SALES
        assert grant_for(Role.PART_TIME_SALES, Permission.PROJECT_VIEW) is Grant.SALES
        assert grant_for(Role.TRANSLATOR, Permission.PROJECT_VIEW) is Grant.ASSIGNED
        assert grant_for(Role.PM, Permission.PROJECT_VIEW) is Grant.ALL

    def test_missing_role_is_denied(self):
        assert grant_for(None, Permission.PROJECT_VIEW) is Grant.DENY
        assert not can(None, Permission.FINANCE_VIEW)

    def test_parse_role(self):
        assert parse_role("finance") is Role.FINANCE
        assert parse_role("boss") is None

    def test_default_role_uses_priority(self):
        assert default_role(["translator", "sales", "finance"]) is Role.FINANCE
        assert default_role(["layout", "unknown"]) is Role.LAYOUT
        assert default_role(["unknown"]) is None


class TestActingRole:

    def test_requested_role_must_be_owned(self):
        user = User(username="u", roles=["sales", "translator"])
        assert user.acting_role("translator") is Role.TRANSLATOR
        assert user.acting_role("finance") is None

    def test_default_when_not_requested(self):
        user = User(username="u", roles=["translator", "sales"])
        assert user.acting_role(None) is Role.SALES

    def test_has_permission_considers_any_role(self):
        user = User(username="u", roles=["translator", "finance"])
        assert user.has_permission(Permission.FINANCE_EDIT)


class TestFinanceScope:

    def _current(self, role):
        return CurrentUser(user=User(id=1, username="u", roles=[role.value]), role=role)

    def test_finance_sees_everything(self):
        assert finance_scope(self._current(Role.FINANCE)) is True

    def test_sales_sees_own_projects(self):
        assert finance_scope(self._current(Role.SALES)) is False

    def test_translator_is_rejected(self):
        with pytest.raises(AuthorizationError):
            finance_scope(self._current(Role.TRANSLATOR))
