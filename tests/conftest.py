"""
tests/conftest.py -- Shared test fixtures for MemberPortal integration tests.

This module provides:
  - make_store(): an isolated in-memory UserStore seeded with one principal
    per access-gate situation (see SEED below)
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - client: TestClient with follow_redirects=False over the full ASGI app
  - login: fixture returning a helper that signs the client in through
    POST /api/v1/auth/login
  - setup_client: TestClient with the first-run /setup redirect active
  - empty_setup_client: first-run TestClient over a store with no principals

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
Each store gets a unique name so tests never see each other's rows.

The DEBUG env var must be set before any app import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.models import Application, Principal, Role
from auth.passwords import hash_password
from auth.store import UserStore


@dataclass(frozen=True)
class SeedUser:
    username: str
    password: str
    role: Role = Role.USER
    is_active: bool = True
    is_approved: bool = False
    plan_name: str | None = None
    pending_application: bool = False


# One principal per gate situation. Passwords are the username + "pass123".
SEED: dict[str, SeedUser] = {
    "root": SeedUser("root", "rootpass123", role=Role.SUPER_ADMIN),
    "moderator": SeedUser("moderator", "moderatorpass123", role=Role.ADMIN),
    "ana": SeedUser("ana", "anapass123", is_approved=True, plan_name="Júnior"),
    "bruno": SeedUser("bruno", "brunopass123", pending_application=True),
    "carla": SeedUser("carla", "carlapass123", is_approved=True, plan_name="Pleno", pending_application=True),
    "dora": SeedUser("dora", "dorapass123", is_active=False, is_approved=True, plan_name="Sênior"),
}


def make_store() -> tuple[UserStore, dict[str, int]]:
    """Create an isolated shared-memory store and seed it. Returns (store, username -> id)."""
    store = UserStore(db_url=f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    ids: dict[str, int] = {}
    for seed in SEED.values():
        uid = store.create_user(
            Principal(
                username=seed.username,
                hashed_password=hash_password(seed.password),
                email=f"{seed.username}@example.org",
                full_name=seed.username.title(),
                role=seed.role,
                is_active=seed.is_active,
                is_approved=seed.is_approved,
                plan_name=seed.plan_name,
            )
        )
        ids[seed.username] = uid
        if seed.pending_application:
            store.create_application(Application(user_id=uid, plan_name=seed.plan_name or "Júnior"))
    return store, ids


def _patch_lifespan(user_store: UserStore, setup_required: bool = False):
    """Return a lifespan that installs user_store instead of opening the real database."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.setup_required = setup_required
        yield

    return test_lifespan


@pytest.fixture
def store() -> Generator[tuple[UserStore, dict[str, int]], None, None]:
    s, ids = make_store()
    yield s, ids
    s.close()


@pytest.fixture
def client(store: tuple[UserStore, dict[str, int]]) -> Generator[TestClient, None, None]:
    """TestClient over the full app (API + web) with follow_redirects=False.

    Function-scoped: the session cookie lives in the client, so every test
    starts signed out.
    """
    user_store, _ids = store
    app.router.lifespan_context = _patch_lifespan(user_store)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def login(client: TestClient):
    """Return a helper that signs the client in through the JSON API and returns the response."""

    def _login(username: str, password: str | None = None):
        if password is None:
            password = SEED[username].password
        return client.post("/api/v1/auth/login", json={"username": username, "password": password})

    return _login


@pytest.fixture
def setup_client(store: tuple[UserStore, dict[str, int]]) -> Generator[TestClient, None, None]:
    """TestClient with the first-run flag raised, as if no super_admin existed yet."""
    user_store, _ids = store
    app.router.lifespan_context = _patch_lifespan(user_store, setup_required=True)
    with TestClient(app, follow_redirects=False) as c:
        yield c


@pytest.fixture
def empty_setup_client() -> Generator[tuple[TestClient, UserStore], None, None]:
    """TestClient over a store with no principals at all, in first-run mode."""
    user_store = UserStore(db_url=f"sqlite:///file:test_setup_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    app.router.lifespan_context = _patch_lifespan(user_store, setup_required=True)
    with TestClient(app, follow_redirects=False) as c:
        yield c, user_store
    user_store.close()
