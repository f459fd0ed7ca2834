"""Unit tests for auth/guards.py and auth/session.py.

Guards are pure functions of the session principal, so these run without an
app. The HTTP-level contract (status + JSON body) is covered in
test_auth_api.py and test_admin_api.py.
"""

from __future__ import annotations

import pytest

from auth.guards import (
    Allow,
    Denial,
    require_administrator,
    require_authenticated,
    require_elevated,
    run_guard,
)
from auth.models import Principal, Role, SessionPrincipal
from auth.session import (
    SESSION_KEY,
    clear_session_principal,
    read_session_principal,
    session_principal_for,
    write_session_principal,
)


def sp(role: Role = Role.USER, marker: bool = True) -> SessionPrincipal:
    return SessionPrincipal(id=7, username="ana", role=role, is_authenticated=marker)


UNAUTHORIZED_BODY = {"success": False, "message": "authentication required"}
FORBIDDEN_BODY = {"success": False, "message": "elevated privileges required"}


class TestRequireAuthenticated:
    def test_no_session_is_unauthorized(self):
        result = require_authenticated(None)
        assert isinstance(result, Denial)
        assert result.status_code == 401
        assert result.body() == UNAUTHORIZED_BODY

    def test_marker_false_is_unauthorized(self):
        result = require_authenticated(sp(Role.SUPER_ADMIN, marker=False))
        assert isinstance(result, Denial)
        assert result.status_code == 401

    def test_marker_true_passes(self):
        principal = sp()
        assert require_authenticated(principal) == Allow(principal)


class TestRequireElevated:
    def test_unauthenticated_is_401_not_403(self):
        result = require_elevated(None)
        assert isinstance(result, Denial)
        assert result.status_code == 401
        assert result.body() == UNAUTHORIZED_BODY

    def test_super_admin_without_marker_is_401(self):
        result = require_elevated(sp(Role.SUPER_ADMIN, marker=False))
        assert result.status_code == 401

    @pytest.mark.parametrize("role", [Role.USER, Role.ADMIN])
    def test_lower_roles_are_forbidden(self, role):
        result = require_elevated(sp(role))
        assert isinstance(result, Denial)
        assert result.status_code == 403
        assert result.body() == FORBIDDEN_BODY

    def test_super_admin_passes(self):
        principal = sp(Role.SUPER_ADMIN)
        assert require_elevated(principal) == Allow(principal)


class TestRequireAdministrator:
    def test_user_forbidden(self):
        assert require_administrator(sp(Role.USER)).status_code == 403

    @pytest.mark.parametrize("role", [Role.ADMIN, Role.SUPER_ADMIN])
    def test_admin_tiers_pass(self, role):
        assert isinstance(require_administrator(sp(role)), Allow)


class TestRoleOrder:
    def test_total_order(self):
        assert Role.USER.rank < Role.ADMIN.rank < Role.SUPER_ADMIN.rank
        assert Role.SUPER_ADMIN.at_least(Role.ADMIN)
        assert not Role.ADMIN.at_least(Role.SUPER_ADMIN)
        assert Role.top() is Role.SUPER_ADMIN

    def test_unknown_role_strings_parse_to_none(self):
        assert Role.parse("superadmin") is None
        assert Role.parse("SUPER_ADMIN") is None
        assert Role.parse(None) is None
        assert Role.parse("admin") is Role.ADMIN


class _Ctx:
    def __init__(self, principal):
        self.principal = principal
        self.attached = None

    def read_session_principal(self):
        return self.principal

    def attach_principal(self, principal):
        self.attached = principal


class TestRunGuard:
    def test_allow_attaches_principal(self):
        ctx = _Ctx(sp(Role.SUPER_ADMIN))
        assert run_guard(require_elevated, ctx) is None
        assert ctx.attached == ctx.principal

    def test_denial_attaches_nothing(self):
        ctx = _Ctx(sp(Role.USER))
        denial = run_guard(require_elevated, ctx)
        assert denial is not None and denial.status_code == 403
        assert ctx.attached is None


class TestSessionPrincipal:
    def test_write_then_read(self):
        session: dict = {}
        principal = Principal(id=3, username="root", hashed_password="x", role=Role.SUPER_ADMIN)
        write_session_principal(session, session_principal_for(principal))
        assert session[SESSION_KEY]["role"] == "super_admin"
        assert read_session_principal(session) == SessionPrincipal(
            id=3, username="root", role=Role.SUPER_ADMIN, is_authenticated=True
        )

    def test_unsaved_principal_cannot_get_a_session(self):
        with pytest.raises(ValueError):
            session_principal_for(Principal(username="new", hashed_password="x"))

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "root",
            {},
            {"id": 3, "username": "root", "role": "root"},
            {"id": "3", "username": "root", "role": "super_admin", "is_authenticated": True},
            {"id": True, "username": "root", "role": "super_admin", "is_authenticated": True},
            {"id": 3, "role": "super_admin", "is_authenticated": True},
        ],
    )
    def test_malformed_values_read_as_no_principal(self, raw):
        assert read_session_principal({SESSION_KEY: raw}) is None

    def test_missing_marker_reads_as_unauthenticated(self):
        principal = read_session_principal({SESSION_KEY: {"id": 3, "username": "root", "role": "super_admin"}})
        assert principal is not None
        assert principal.is_authenticated is False
        assert isinstance(require_authenticated(principal), Denial)

    def test_truthy_non_bool_marker_is_not_trusted(self):
        principal = read_session_principal(
            {SESSION_KEY: {"id": 3, "username": "root", "role": "super_admin", "is_authenticated": "yes"}}
        )
        assert principal.is_authenticated is False

    def test_clear(self):
        session = {SESSION_KEY: {"id": 1}, "other": 1}
        clear_session_principal(session)
        assert session == {"other": 1}
