"""
tests/conftest.py -- Shared test fixtures for training portal integration tests.

This module provides:
  - make_profile(): builds a RemoteUserProfile with staff defaults
  - FakeDirectory: in-process stand-in for core.directory.DirectoryClient
  - _make_test_store(): creates an isolated in-memory user DB
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - portal: (client, store, directory, manager) for route tests
  - session_cookie: factory that issues a signed cookie for a given user

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

DEBUG and SCHOOLBOX_SHARED_SECRET must be set before any auth/core import so
get_settings() starts in dev mode with a known handshake secret.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Optional

# CRITICAL: Set env before any auth/core import -- get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SCHOOLBOX_SHARED_SECRET", "test-shared-secret")
os.environ.setdefault("SCHOOLBOX_BASE_URL", "https://schoolbox.test")
os.environ.setdefault("SCHOOLBOX_API_TOKEN", "test-token")
os.environ.setdefault("SESSION_SECRET_KEY", "test-session-key-0123456789abcdef0123")
os.environ.setdefault("ADMIN_USERNAMES", "rootadmin")

import pytest
from fastapi.testclient import TestClient

import asgi  # noqa: F401 -- mounts the web router and /static onto app
from api.limiter import limiter
from api.main import app
from auth.models import LocalUser, Session
from auth.session import SessionManager
from auth.store import UserStore
from core.directory import DirectoryError, NotFoundError
from core.models import RemoteUserProfile

SHARED_SECRET = "test-shared-secret"

limiter.enabled = False


# ---------------------------------------------------------------------------
# Directory stand-in
# ---------------------------------------------------------------------------


def make_profile(
    internal_id: int = 101,
    username: str = "jsmith",
    external_id: Optional[str] = "12345",
    full_name: str = "Jane Smith",
    email: Optional[str] = "jane.smith@school.test",
    role_type: Optional[str] = "staff",
) -> RemoteUserProfile:
    first, _, last = full_name.partition(" ")
    return RemoteUserProfile(
        internal_id=internal_id,
        username=username,
        external_id=external_id,
        first_name=first,
        last_name=last,
        full_name=full_name,
        email=email,
        role_type=role_type,
        role_name="Classroom Staff" if role_type == "staff" else None,
    )


class FakeDirectory:
    """Answers handshake lookups and roster fetches from in-memory lists.

    Set .error to an exception instance to make every call raise it.
    """

    def __init__(self) -> None:
        self.profiles: list[RemoteUserProfile] = []
        self.error: Optional[DirectoryError] = None
        self.calls: list[tuple] = []

    def fetch_user_by_handshake(self, external_id: str, username: Optional[str] = None) -> RemoteUserProfile:
        self.calls.append(("handshake", external_id, username))
        if self.error is not None:
            raise self.error
        for p in self.profiles:
            if p.external_id == external_id or p.username == username:
                return p
        raise NotFoundError(f"no user {external_id}")

    def fetch_all_staff(self) -> list[RemoteUserProfile]:
        self.calls.append(("roster",))
        if self.error is not None:
            raise self.error
        return [p for p in self.profiles if p.role_type == "staff"]

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Store / lifespan helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return UserStore(db_url=f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(store: UserStore, directory: FakeDirectory, manager: SessionManager):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = store
        app.state.directory = directory
        app.state.session_manager = manager
        yield

    return test_lifespan


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    """A fresh, empty user store per test."""
    s = _make_test_store(uuid.uuid4().hex)
    yield s
    s.close()


@pytest.fixture
def manager() -> SessionManager:
    return SessionManager(secret_key="unit-test-session-key-0123456789abcdef")


@pytest.fixture
def portal(store: UserStore, manager: SessionManager) -> Generator[tuple, None, None]:
    """Yield (client, store, directory, manager) around the real app.

    follow_redirects=False is essential: the gate and verify endpoint answer
    with 302s, and the tests assert on the Location header.
    """
    directory = FakeDirectory()
    app.router.lifespan_context = _patch_lifespan(store, directory, manager)
    with TestClient(app, base_url="https://testserver", follow_redirects=False) as client:
        yield client, store, directory, manager


@pytest.fixture
def session_cookie(manager: SessionManager):
    """Return a factory: (LocalUser, **flags) -> signed cookie value."""

    def _issue(user: LocalUser, *, is_admin: bool = False, is_hr: bool = False, role: str = "staff", now=None) -> str:
        return manager.issue(
            Session(
                user_id=user.id,
                remote_user_id=101,
                external_id="12345",
                username=user.email.split("@")[0],
                email=user.email,
                name=user.name,
                role=role,
                is_admin=is_admin,
                is_hr=is_hr,
            ),
            now=now,
        )

    return _issue
