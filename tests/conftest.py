"""
tests/conftest.py -- Shared test fixtures for TenantAuth unit and integration tests.

This module provides:
  - FakeClock: a settable time source injected into every time-aware component
  - settings: test Settings with a fixed secret and cheap argon2 cost
  - store / hasher / tokens / sessions / limiter / service: components wired
    the same way api.main.init_state() wires them
  - make_user: factory that inserts accounts directly (bypasses signup throttling)
  - api_client: TestClient whose lifespan wires the test components into app.state
  - auth_headers: factory returning a Bearer header for a given user

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each test
gets its own name so no state leaks between tests.

DEBUG and ALLOWED_HOSTS must be set before api.main is imported: the module
reads get_settings() at import time to configure its middleware.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any api/core import so get_settings() auto-generates a
# dev SECRET_KEY and TrustedHostMiddleware accepts TestClient's Host header.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost", "127.0.0.1"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_state
from auth.models import Role, TokenKind, User
from auth.passwords import PasswordHasher
from auth.ratelimit import RateLimiter
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import AuthStore
from auth.tokens import TokenService
from core.config import Settings

TEST_SECRET = "test-secret-key-for-tenantauth-0123456789abcdef"
DEFAULT_PASSWORD = "Abcdef12"


class FakeClock:
    """Callable clock returning a settable epoch time."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def memory_db_url() -> str:
    return f"sqlite:///file:tenantauth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    """Production-shaped settings with the KDF cost turned down for speed."""
    return Settings(
        debug=True,
        secret_key=TEST_SECRET,
        hash_time_cost=1,
        hash_memory_cost=8,
        hash_parallelism=1,
    )


@pytest.fixture
def store(clock: FakeClock) -> Generator[AuthStore, None, None]:
    s = AuthStore(db_url=memory_db_url(), clock=clock)
    yield s
    s.close()


@pytest.fixture
def hasher(settings: Settings) -> PasswordHasher:
    return PasswordHasher(
        time_cost=settings.hash_time_cost,
        memory_cost=settings.hash_memory_cost,
        parallelism=settings.hash_parallelism,
    )


@pytest.fixture
def tokens(settings: Settings, clock: FakeClock) -> TokenService:
    return TokenService(
        settings.secret_key,
        access_ttl=settings.access_token_ttl,
        refresh_ttl=settings.refresh_token_ttl,
        clock=clock,
    )


@pytest.fixture
def sessions(store: AuthStore, tokens: TokenService, clock: FakeClock) -> SessionStore:
    return SessionStore(store, tokens, clock=clock)


@pytest.fixture
def limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(clock=clock)


@pytest.fixture
def service(
    store: AuthStore,
    hasher: PasswordHasher,
    tokens: TokenService,
    sessions: SessionStore,
    clock: FakeClock,
    settings: Settings,
) -> AuthService:
    return AuthService(store, hasher, tokens, sessions, clock=clock, reset_ttl=settings.password_reset_ttl)


@pytest.fixture
def make_user(store: AuthStore, hasher: PasswordHasher) -> Callable[..., User]:
    """Return a factory that inserts a user straight into the store."""

    def _make(
        email: str = "user@example.com",
        password: str = DEFAULT_PASSWORD,
        role: Role = Role.user,
        is_active: bool = True,
        username: str | None = None,
    ) -> User:
        return store.create_user(
            User(
                email=email,
                username=username,
                password_hash=hasher.hash(password),
                role=role,
                is_active=is_active,
            )
        )

    return _make


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, store: AuthStore, clock: FakeClock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and fake clock into app.state via init_state() so
    route handlers see the same components the unit fixtures use. The
    purge_task is a long-sleeping coroutine so shutdown can cancel it.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_state(app, settings, clock=clock, store=store)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def api_client(settings: Settings, store: AuthStore, clock: FakeClock) -> Generator[TestClient, None, None]:
    """TestClient over the real app with isolated state per test.

    Rate-limit counters live in app.state, so every test starts with empty
    windows.
    """
    app.router.lifespan_context = _patch_lifespan(settings, store, clock)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def auth_headers(api_client: TestClient) -> Callable[[User], dict[str, str]]:
    """Return a factory producing an Authorization header for a user."""

    def _headers(user: User) -> dict[str, str]:
        token = api_client.app.state.tokens.mint(user.id, user.email, user.role, TokenKind.access)
        return {"Authorization": f"Bearer {token}"}

    return _headers
