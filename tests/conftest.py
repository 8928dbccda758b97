"""
tests/conftest.py -- Shared test fixtures for LeadBridge tests.

This module provides:
  - StubTokenProvider: stands in for the CRM token endpoint, counting calls
  - FakeClock: controllable "now" for the OAuth broker
  - store / provider / clock / broker / make_user: unit-test fixtures
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - api_client: TestClient over the real ASGI app with isolated stores

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

SECRET_KEY must be set before any api/ import: Settings refuses to load
without one, in every mode.
"""

from __future__ import annotations

import os
import threading
import time
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

# CRITICAL: Set SECRET_KEY before any api/ or core/ import so get_settings()
# does not raise ValueError.
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.oauth import OAuthTokenBroker
from auth.passwords import hash_password
from auth.store import UserStore
from auth.tokens import SessionTokenIssuer
from core.config import get_settings
from crm.client import CRMApiClient

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class StubTokenProvider:
    """In-process TokenProvider with canned responses and call counters.

    Set exchange_error / refresh_error to an exception instance to make the
    next calls raise it. refresh_delay slows refresh() down so concurrent
    callers overlap.
    """

    def __init__(self) -> None:
        self.exchange_response: dict = {"access_token": "A", "refresh_token": "R", "expires_in": 3600}
        self.refresh_response: dict = {"access_token": "A2", "refresh_token": "R2", "expires_in": 3600}
        self.exchange_error: Exception | None = None
        self.refresh_error: Exception | None = None
        self.refresh_delay: float = 0.0
        self.exchange_calls: list[str] = []
        self.refresh_calls: list[str] = []
        self._lock = threading.Lock()

    def exchange_code(self, code: str) -> dict:
        self.exchange_calls.append(code)
        if self.exchange_error is not None:
            raise self.exchange_error
        return dict(self.exchange_response)

    def refresh(self, refresh_token: str) -> dict:
        with self._lock:
            self.refresh_calls.append(refresh_token)
        if self.refresh_delay:
            time.sleep(self.refresh_delay)
        if self.refresh_error is not None:
            raise self.refresh_error
        return dict(self.refresh_response)


@dataclass
class FakeClock:
    now: datetime

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    """Fresh in-memory UserStore (single-threaded use only)."""
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def provider() -> StubTokenProvider:
    return StubTokenProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def broker(store: UserStore, provider: StubTokenProvider, clock: FakeClock) -> OAuthTokenBroker:
    return OAuthTokenBroker(store, provider, clock=clock)


@pytest.fixture
def make_user(store: UserStore):
    """Factory: create a user with password "secret123" and return its id."""

    def _make(email: str = "ana@example.com", name: str = "Ana", user_id: str | None = None) -> str:
        return store.create_user(User(id=user_id, name=name, email=email, password_hash=hash_password("secret123")))

    return _make


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(components: SimpleNamespace):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test components into app.state so TestClient routes see
    an isolated test DB and the stub provider rather than real services.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = components.settings
        app.state.user_store = components.store
        app.state.issuer = components.issuer
        app.state.broker = components.broker
        app.state.crm = components.crm
        yield

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, SimpleNamespace], None, None]:
    """Yield (client, components) for API integration tests.

    components exposes settings, store, issuer, provider and broker so tests
    can seed data and inspect provider calls. follow_redirects=False keeps
    the OAuth callback's Location header visible.
    """
    settings = get_settings()
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url)
    provider = StubTokenProvider()
    broker = OAuthTokenBroker(user_store, provider)
    components = SimpleNamespace(
        settings=settings,
        store=user_store,
        issuer=SessionTokenIssuer.from_settings(settings),
        provider=provider,
        broker=broker,
        crm=CRMApiClient(broker, settings.crm_api_base_url, settings.crm_api_version),
    )

    app.router.lifespan_context = _patch_lifespan(components)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, components

    user_store.close()
