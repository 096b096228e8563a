"""
tests/test_session_routes.py -- /api/session, logout, and the public web pages.

Covers:
  - GET /api/session returns the exposed claims
  - POST /api/session/logout and POST /logout clear the cookie
  - /unauthorized renders whitelisted messages only
  - /login bounces signed-in users to the dashboard
  - /dashboard shows the forbidden banner
  - / and /login delete expired or unreadable session cookies
"""

from __future__ import annotations

import pytest

from auth.models import LocalUser


@pytest.fixture
def signed_in(portal, session_cookie):
    client, store, _, manager = portal
    user = store.create_user(LocalUser(name="Jane Smith", email="jane@school.test", roles=["staff", "hr"]))
    client.cookies.set(manager.cookie_name, session_cookie(user, is_hr=True))
    return client, user, manager


def _cleared(resp, cookie_name: str) -> bool:
    header = resp.headers.get("set-cookie", "").lower()
    return cookie_name in header and "max-age=0" in header


class TestSessionApi:
    def test_current_session(self, signed_in):
        client, user, _ = signed_in
        body = client.get("/api/session").json()["session"]
        assert body["user_id"] == user.id
        assert body["name"] == "Jane Smith"
        assert body["is_hr"] is True
        assert body["is_admin"] is False
        assert body["expires_at"] > 0

    def test_logout_clears_cookie(self, signed_in):
        client, _, manager = signed_in
        resp = client.post("/api/session/logout")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Logged out."}
        assert _cleared(resp, manager.cookie_name)

    def test_session_api_gated_without_cookie(self, portal):
        client, *_ = portal
        resp = client.get("/api/session")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/unauthorized"


class TestPages:
    @pytest.mark.parametrize(
        "error,expected",
        [
            ("expired", "Your session has expired"),
            ("forbidden", "only available to staff"),
            ("invalid", "could not be read"),
            ("", "open the training portal from Schoolbox"),
        ],
    )
    def test_unauthorized_messages(self, portal, error, expected):
        client, *_ = portal
        resp = client.get(f"/unauthorized?error={error}")
        assert resp.status_code == 200
        assert "Access Denied" in resp.text
        assert expected in resp.text

    def test_unauthorized_never_reflects_query(self, portal):
        client, *_ = portal
        resp = client.get("/unauthorized?error=<script>alert(1)</script>")
        assert "<script>" not in resp.text

    def test_login_page_public(self, portal):
        client, *_ = portal
        resp = client.get("/login")
        assert resp.status_code == 200
        assert "Schoolbox" in resp.text

    def test_login_redirects_signed_in_user(self, signed_in):
        client, *_ = signed_in
        resp = client.get("/login")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/dashboard"

    def test_dashboard_forbidden_banner(self, signed_in):
        client, *_ = signed_in
        resp = client.get("/dashboard?error=forbidden")
        assert "You do not have permission to view that page." in resp.text

    def test_web_logout(self, signed_in):
        client, _, manager = signed_in
        resp = client.post("/logout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        assert _cleared(resp, manager.cookie_name)


class TestPublicPagesClearStaleCookies:
    """The gate waves / and /login through, so the page handlers must clear bad cookies themselves."""

    def test_home_clears_expired_cookie(self, portal, session_cookie):
        client, store, _, manager = portal
        user = store.create_user(LocalUser(name="Jane Smith", email="jane@school.test"))
        client.cookies.set(manager.cookie_name, session_cookie(user, now=1_700_000_000))
        resp = client.get("/")
        assert resp.status_code == 200
        assert _cleared(resp, manager.cookie_name)

    def test_login_clears_unreadable_cookie(self, portal):
        client, _, _, manager = portal
        client.cookies.set(manager.cookie_name, "junk")
        resp = client.get("/login")
        assert resp.status_code == 200
        assert _cleared(resp, manager.cookie_name)

    def test_home_with_valid_cookie_sets_nothing(self, signed_in):
        client, *_ = signed_in
        resp = client.get("/")
        assert resp.status_code == 200
        assert "set-cookie" not in resp.headers
