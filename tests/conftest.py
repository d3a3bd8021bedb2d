"""
tests/conftest.py -- Shared test fixtures for PageGate integration tests.

This module provides:
  - FakeIdentityProvider: in-process stand-in for the identity provider
  - make_activity_store(): isolated file-backed SQLite store under a tmp dir
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - gateway: module-scoped TestClient (follow_redirects=False) plus its services
  - client: the gateway's TestClient with an empty cookie jar for each test

Design: activity stores are real SQLite files (WAL) in pytest tmp dirs. Writes
run in the thread pool, so plain :memory: DBs (one per connection) would
present a blank schema to each worker thread, and shared-cache memory DBs
answer concurrent readers with "table is locked" instead of waiting.

LOGIN_RATE_LIMIT must be raised before any api import: get_settings() is
cached at first call and the login tests would otherwise trip 10/minute.
"""

from __future__ import annotations

import asyncio
import os
import secrets
import time
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

# CRITICAL: set before any api/core import so get_settings() sees them.
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ENVIRONMENT", "development")

import pytest
from fastapi.testclient import TestClient

from activity.log import ActivityLog
from activity.store import ActivityStore
from api.main import wire_state
from asgi import app
from auth.models import Principal
from auth.sessions import SESSION_COOKIE
from core.config import get_settings
from core.errors import AuthenticationFailed, Unauthenticated, UpstreamUnavailable
from core.lifecycle import ProviderLifecycle

# ---------------------------------------------------------------------------
# Fake identity provider
# ---------------------------------------------------------------------------


class FakeIdentityProvider:
    """Implements the IdentityProvider contract without any network.

    Assertions must be registered with add_assertion() before use. Credentials
    are random strings mapped to claim sets. Expiry is NOT checked here, so
    tests exercise the verifier's own expiry boundary.
    """

    def __init__(self) -> None:
        self.assertions: dict[str, str] = {}
        self.credentials: dict[str, dict] = {}
        self.unreachable = False
        self.verify_calls = 0

    def add_assertion(self, subject: str) -> str:
        assertion = f"assertion-{secrets.token_hex(8)}"
        self.assertions[assertion] = subject
        return assertion

    def credential_for(self, subject: str, expires_at: int, issued_at: int | None = None) -> str:
        credential = f"cred-{secrets.token_hex(16)}"
        self.credentials[credential] = {
            "uid": subject,
            "iat": issued_at if issued_at is not None else int(time.time()),
            "exp": expires_at,
        }
        return credential

    def revoke(self, credential: str) -> None:
        self.credentials[credential]["revoked"] = True

    def verify_assertion(self, assertion: str) -> Principal:
        if self.unreachable:
            raise UpstreamUnavailable()
        subject = self.assertions.get(assertion)
        if subject is None:
            raise AuthenticationFailed()
        return Principal(subject=subject)

    def mint_credential(self, assertion: str, lifetime: timedelta) -> str:
        if self.unreachable:
            raise UpstreamUnavailable()
        if assertion not in self.assertions:
            raise AuthenticationFailed()
        now = int(time.time())
        return self.credential_for(self.assertions[assertion], now + int(lifetime.total_seconds()), now)

    def verify_credential(self, credential: str, check_revoked: bool = True) -> Principal:
        self.verify_calls += 1
        if self.unreachable:
            raise UpstreamUnavailable()
        claims = self.credentials.get(credential)
        if claims is None or (check_revoked and claims.get("revoked")):
            raise Unauthenticated()
        return Principal.from_claims(claims)


# ---------------------------------------------------------------------------
# Store and client helpers
# ---------------------------------------------------------------------------


def make_activity_store(directory: Path) -> ActivityStore:
    """Create an isolated SQLite activity store in directory."""
    return ActivityStore(f"sqlite:///{directory / 'activity.db'}")


def new_subject() -> str:
    """Unique subject per test so module-scoped stores never leak between tests."""
    return f"user-{uuid.uuid4().hex[:12]}"


def session_headers(credential: str) -> dict[str, str]:
    return {"Cookie": f"{SESSION_COOKIE}={credential}"}


def wait_for_count(store: ActivityStore, subject: str, expected: int, timeout: float = 2.0) -> int:
    """Poll until a detached activity write lands (or the timeout passes)."""
    deadline = time.monotonic() + timeout
    count = store.count(subject)
    while count < expected and time.monotonic() < deadline:
        time.sleep(0.01)
        count = store.count(subject)
    return count


def _patch_lifespan(lifecycle: ProviderLifecycle, activity_log: ActivityLog):
    """Return an async context manager that replaces the real lifespan.

    Wires the fake-provider lifecycle and the test store into app.state via
    the same wire_state() the real lifespan uses, so routes see exactly the
    production service graph minus Firebase.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_state(app, get_settings(), lifecycle, activity_log)
        yield
        await activity_log.drain()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@dataclass
class Gateway:
    client: TestClient
    provider: FakeIdentityProvider
    lifecycle: ProviderLifecycle
    activity_log: ActivityLog
    store: ActivityStore


@pytest.fixture(scope="module")
def gateway(tmp_path_factory) -> Generator[Gateway, None, None]:
    """Yield a running gateway backed by the fake provider.

    follow_redirects=False is essential: page-class rejections are asserted by
    their redirect Location, which is invisible once the client follows it.
    """
    store = make_activity_store(tmp_path_factory.mktemp("activity"))
    provider = FakeIdentityProvider()
    lifecycle = ProviderLifecycle(lambda: provider)
    lifecycle.initialize()
    activity_log = ActivityLog(store, max_attempts=3, wait_min=0.01, wait_max=0.05)

    app.router.lifespan_context = _patch_lifespan(lifecycle, activity_log)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=False) as test_client:
        yield Gateway(test_client, provider, lifecycle, activity_log, store)

    store.close()


@pytest.fixture
def client(gateway: Gateway) -> TestClient:
    """The gateway client with an empty cookie jar, so no session leaks between tests."""
    gateway.client.cookies.clear()
    return gateway.client


@pytest.fixture
def run():
    """Run a coroutine to completion on a fresh event loop (unit tests of async services)."""

    def _run(coro):
        return asyncio.run(coro)

    return _run
