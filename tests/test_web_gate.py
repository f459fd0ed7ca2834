"""
tests/test_web_gate.py -- Integration tests for the server-rendered access gate.

These tests exercise _gate() end-to-end through the real ASGI stack using
the client fixture (follow_redirects=False). We assert on redirect Location
headers directly -- following the redirect would hide them.

Coverage:
  - Unauthenticated requests -> 302 /login?next={path}
  - Unapproved profile or pending application -> 302 /pending-approval
  - The pending-approval page never redirects to itself
  - Approved members reach the dashboard
  - Admin console: 403 rendered in place for lower roles, no redirect
  - Login form: next= is always a relative path (open-redirect prevention)
  - First-run setup wizard
"""

from __future__ import annotations

import pytest

from auth.models import ApplicationStatus, Role
from web.routes import _safe_next


class TestGateRedirects:
    def test_unauthenticated_redirects_to_login(self, client):
        resp = client.get("/dashboard")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?next=/dashboard"

    def test_root_redirects_to_dashboard(self, client):
        resp = client.get("/")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/dashboard"

    def test_unapproved_member_is_sent_to_pending_approval(self, client, login):
        login("bruno")
        resp = client.get("/dashboard")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/pending-approval"

    def test_pending_page_renders_without_redirect(self, client, login):
        login("bruno")
        resp = client.get("/pending-approval")
        assert resp.status_code == 200
        assert "awaiting review" in resp.text
        assert "Júnior" in resp.text

    def test_approved_member_sees_dashboard(self, client, login):
        login("ana")
        resp = client.get("/dashboard")
        assert resp.status_code == 200
        assert "Júnior" in resp.text

    def test_pending_application_gates_approved_profile(self, client, login):
        login("carla")
        resp = client.get("/dashboard")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/pending-approval"

    def test_approved_member_can_still_view_status_page(self, client, login):
        login("ana")
        resp = client.get("/pending-approval")
        assert resp.status_code == 200
        assert "membership is active" in resp.text

    def test_approval_takes_effect_on_next_request(self, client, login, store):
        s, ids = store
        login("bruno")
        assert client.get("/dashboard").status_code == 302
        app_id = s.get_application_for_user(ids["bruno"]).id
        s.review_application(app_id, ApplicationStatus.APPROVED, reviewed_by=ids["root"])
        s.update_user(ids["bruno"], is_approved=True, plan_name="Júnior")
        assert client.get("/dashboard").status_code == 200

    def test_deactivated_session_goes_back_to_login(self, client, login, store):
        s, ids = store
        login("ana")
        s.update_user(ids["ana"], is_active=False)
        resp = client.get("/dashboard")
        assert resp.status_code == 302
        assert resp.headers["location"].startswith("/login")


class TestAdminConsole:
    def test_anonymous_redirected_to_login(self, client):
        resp = client.get("/admin")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?next=/admin"

    @pytest.mark.parametrize("username", ["ana", "moderator"])
    def test_lower_roles_denied_in_place(self, client, login, username):
        login(username)
        resp = client.get("/admin")
        assert resp.status_code == 403
        assert "location" not in resp.headers
        assert "Access denied" in resp.text

    def test_unapproved_member_denied_not_sent_to_pending(self, client, login):
        login("bruno")
        resp = client.get("/admin")
        assert resp.status_code == 403

    def test_super_admin_sees_pending_applications(self, client, login):
        login("root")
        resp = client.get("/admin")
        assert resp.status_code == 200
        assert "Pending applications" in resp.text
        assert "Pleno" in resp.text


class TestLoginForm:
    def test_form_renders_with_next(self, client):
        resp = client.get("/login", params={"next": "/pending-approval"})
        assert resp.status_code == 200
        assert 'value="/pending-approval"' in resp.text

    def test_unknown_error_code_is_not_echoed(self, client):
        resp = client.get("/login", params={"error": "<script>alert(1)</script>"})
        assert resp.status_code == 200
        assert "alert(1)" not in resp.text

    def test_bad_credentials(self, client):
        resp = client.post("/login", data={"username": "ana", "password": "nope"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?error=bad_credentials"
        assert "Invalid username or password." in client.get("/login?error=bad_credentials").text

    def test_success_follows_next(self, client):
        resp = client.post("/login", data={"username": "ana", "password": "anapass123", "next": "/dashboard"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/dashboard"
        assert resp.headers["cache-control"] == "no-store"
        assert client.get("/dashboard").status_code == 200

    def test_offsite_next_is_replaced(self, client):
        resp = client.post("/login", data={"username": "ana", "password": "anapass123", "next": "//evil.example"})
        assert resp.headers["location"] == "/dashboard"

    def test_signed_in_user_skips_form(self, client, login):
        login("ana")
        resp = client.get("/login")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/dashboard"

    def test_logout(self, client, login):
        login("ana")
        resp = client.post("/logout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        assert client.get("/dashboard").status_code == 302

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("/pending-approval", "/pending-approval"),
            ("https://evil.example/", "/dashboard"),
            ("//evil.example", "/dashboard"),
            ("", "/dashboard"),
            (None, "/dashboard"),
        ],
    )
    def test_safe_next(self, raw, expected):
        assert _safe_next(raw) == expected


class TestFirstRunSetup:
    def test_everything_redirects_to_setup(self, setup_client):
        for path in ("/", "/dashboard", "/login", "/api/v1/auth/me"):
            resp = setup_client.get(path)
            assert resp.status_code == 302
            assert resp.headers["location"] == "/setup"

    def test_setup_refused_when_super_admin_exists(self, setup_client):
        # The seeded store already holds a super_admin.
        resp = setup_client.post(
            "/setup",
            data={"username": "boss", "password": "bootstrap1", "confirm_password": "bootstrap1"},
        )
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?error=setup_complete"
        assert setup_client.get("/dashboard").headers["location"] == "/login?next=/dashboard"

    def test_setup_hidden_after_first_run(self, client):
        assert client.get("/setup").status_code == 404


class TestSetupOnEmptyStore:
    FORM = {
        "username": "boss",
        "full_name": "The Boss",
        "email": "boss@example.org",
        "password": "bootstrap1",
        "confirm_password": "bootstrap1",
    }

    def test_form_renders(self, empty_setup_client):
        client, _store = empty_setup_client
        resp = client.get("/setup")
        assert resp.status_code == 200
        assert "Create the first administrator" in resp.text

    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"username": "   "}, "Username is required."),
            ({"confirm_password": "different1"}, "Passwords do not match."),
            ({"password": "short", "confirm_password": "short"}, "Password must be at least 8 characters."),
        ],
    )
    def test_invalid_input_rerenders(self, empty_setup_client, overrides, message):
        client, store = empty_setup_client
        resp = client.post("/setup", data={**self.FORM, **overrides})
        assert resp.status_code == 400
        assert message in resp.text
        assert store.has_super_admin() is False

    def test_creates_super_admin_and_signs_in(self, empty_setup_client):
        client, store = empty_setup_client
        resp = client.post("/setup", data=self.FORM)
        assert resp.status_code == 302
        assert resp.headers["location"] == "/admin"

        admin = store.get_by_username("boss")
        assert admin.role is Role.SUPER_ADMIN
        assert admin.email == "boss@example.org"
        assert admin.hashed_password != "bootstrap1"

        assert client.get("/admin").status_code == 200
        assert client.get("/setup").status_code == 404
