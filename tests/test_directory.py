"""Unit tests for core/directory.py -- the HTTP session is replaced with a fake.

Covers:
- to_profile() mapping and required fields
- Handshake lookup strategy order and fall-through
- NotFound vs Upstream error classification
- Cursor pagination, the page ceiling, and abort-on-failed-page
- Staff filtering for the roster
"""

import json
from urllib.parse import urlparse

import pytest
import requests

from core.directory import DirectoryClient, NotFoundError, UpstreamError, is_staff, to_profile

BASE = "https://schoolbox.test"

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, text: str | None = None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON")
        return self._payload


class FakeSession:
    """Routes GETs to a handler(path, params) -> FakeResponse and records them."""

    def __init__(self, handler):
        self.handler = handler
        self.headers: dict = {}
        self.max_redirects = 30
        self.requests: list[tuple[str, dict]] = []
        self.closed = False

    def get(self, url, params=None, timeout=None):
        path = urlparse(url).path
        self.requests.append((path, dict(params or {})))
        return self.handler(path, params or {})

    def close(self):
        self.closed = True


def _user(uid: int, username: str, role: str = "staff", **extra) -> dict:
    return {
        "id": uid,
        "username": username,
        "firstName": username.capitalize(),
        "lastName": "Tester",
        "email": f"{username}@school.test",
        "role": {"type": role, "name": role.title()},
        **extra,
    }


def _list(users, next_cursor=None) -> FakeResponse:
    return FakeResponse(200, {"data": users, "metadata": {"cursor": {"next": next_cursor}}})


def _client(handler, **kwargs) -> tuple[DirectoryClient, FakeSession]:
    session = FakeSession(handler)
    return DirectoryClient(BASE, "tok", session=session, **kwargs), session


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------


class TestToProfile:
    def test_full_name_falls_back_to_first_last(self):
        p = to_profile(_user(7, "amy"))
        assert p.full_name == "Amy Tester"
        assert p.internal_id == 7
        assert p.role_type == "staff"
        assert is_staff(p)

    def test_explicit_full_name_kept(self):
        assert to_profile(_user(7, "amy", fullName="Dr Amy T")).full_name == "Dr Amy T"

    def test_external_id_stringified(self):
        assert to_profile(_user(7, "amy", externalId=555)).external_id == "555"

    @pytest.mark.parametrize("raw", [{"username": "x"}, {"id": 3}, "not a dict", {"id": "abc", "username": "x"}])
    def test_missing_or_bad_required_fields(self, raw):
        with pytest.raises(ValueError):
            to_profile(raw)

    def test_student_is_not_staff(self):
        assert not is_staff(to_profile(_user(8, "kid", role="student")))


# ---------------------------------------------------------------------------
# Client construction
# ---------------------------------------------------------------------------


def test_client_sets_bearer_and_redirect_cap():
    client, session = _client(lambda path, params: _list([]))
    assert session.headers["Authorization"] == "Bearer tok"
    assert session.max_redirects == 3
    client.close()
    assert session.closed


# ---------------------------------------------------------------------------
# Handshake resolution
# ---------------------------------------------------------------------------


class TestFetchUserByHandshake:
    def test_direct_id_hit_stops_early(self):
        client, session = _client(lambda path, params: FakeResponse(200, _user(12345, "jsmith")))
        p = client.fetch_user_by_handshake("12345", "jsmith")
        assert p.username == "jsmith"
        assert [r[0] for r in session.requests] == ["/api/user/12345"]

    def test_falls_through_to_username_when_id_and_external_id_miss(self):
        """Scenario: direct lookup 404s, externalId filter empty, username filter finds one."""

        def handler(path, params):
            if path == "/api/user/999":
                return FakeResponse(404, {"error": "nope"})
            flt = json.loads(params["filter"])
            if flt == {"username": "jsmith"}:
                return _list([_user(4, "jsmith")])
            return _list([])

        client, session = _client(handler)
        p = client.fetch_user_by_handshake("999", "jsmith")
        assert p.internal_id == 4
        filters = [json.loads(r[1]["filter"]) for r in session.requests if "filter" in r[1]]
        assert filters == [{"externalId": "999"}, {"username": "jsmith"}]

    def test_username_from_external_id_is_last_resort(self):
        def handler(path, params):
            flt = json.loads(params["filter"])
            if flt == {"username": "E-77"}:
                return _list([_user(5, "E-77")])
            return _list([])

        client, session = _client(handler)
        assert client.fetch_user_by_handshake("E-77", "someone").internal_id == 5
        # Non-numeric id never tries the direct endpoint.
        assert all(r[0] == "/api/user" for r in session.requests)
        assert len(session.requests) == 3

    def test_not_found_when_every_strategy_is_empty(self):
        def handler(path, params):
            if path.startswith("/api/user/"):
                return FakeResponse(404, {})
            return _list([])

        client, _ = _client(handler)
        with pytest.raises(NotFoundError):
            client.fetch_user_by_handshake("1", "ghost")

    def test_upstream_error_when_a_strategy_failed_upstream(self):
        def handler(path, params):
            if path.startswith("/api/user/"):
                return FakeResponse(503, None, text="down")
            return _list([])

        client, _ = _client(handler)
        with pytest.raises(UpstreamError):
            client.fetch_user_by_handshake("1", "ghost")

    def test_transport_exception_is_upstream(self):
        def handler(path, params):
            raise requests.ConnectionError("refused")

        client, _ = _client(handler)
        with pytest.raises(UpstreamError):
            client.fetch_user_by_handshake("1", "ghost")

    def test_upstream_failure_then_later_hit_succeeds(self):
        def handler(path, params):
            if path.startswith("/api/user/"):
                return FakeResponse(500, None, text="boom")
            return _list([_user(6, "jsmith")])

        client, _ = _client(handler)
        assert client.fetch_user_by_handshake("6", "jsmith").internal_id == 6


# ---------------------------------------------------------------------------
# Pagination / roster
# ---------------------------------------------------------------------------


class TestRoster:
    def test_follows_cursor_and_filters_staff(self):
        pages = {
            None: _list([_user(1, "a"), _user(2, "kid", role="student")], "c2"),
            "c2": _list([_user(3, "b"), {"id": None, "username": "broken"}], None),
        }
        client, session = _client(lambda path, params: pages[params.get("cursor")], page_size=2)
        staff = client.fetch_all_staff()
        assert [s.username for s in staff] == ["a", "b"]
        assert [r[1]["limit"] for r in session.requests] == [2, 2]
        assert "cursor" not in session.requests[0][1]
        assert session.requests[1][1]["cursor"] == "c2"

    def test_stops_at_page_ceiling(self):
        client, session = _client(lambda path, params: _list([_user(1, "a")], "more"), max_pages=3)
        assert len(client.fetch_all_staff()) == 3
        assert len(session.requests) == 3

    def test_failed_page_aborts_whole_fetch(self):
        def handler(path, params):
            if params.get("cursor") == "c2":
                return FakeResponse(500, None, text="boom")
            return _list([_user(1, "a")], "c2")

        client, _ = _client(handler)
        with pytest.raises(UpstreamError):
            client.fetch_all_staff()

    def test_missing_data_array_is_upstream_error(self):
        client, _ = _client(lambda path, params: FakeResponse(200, {"items": []}))
        with pytest.raises(UpstreamError):
            client.fetch_all_staff()

    def test_iter_all_staff_is_lazy(self):
        client, session = _client(lambda path, params: _list([_user(1, "a")], "next"))
        it = client.iter_all_staff()
        assert session.requests == []
        next(it)
        assert len(session.requests) == 1
