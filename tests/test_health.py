"""
tests/test_health.py -- Integration tests for GET /health and GET /api/health.

Covers:
  - 200 response with status, version, ready flag, and components
  - components.activity_log reports 'ok' for a reachable store
  - No authentication required
  - ready is False (still 200) while the identity provider is not ready
  - initialization attempts and last error class from the lifecycle snapshot
"""

from __future__ import annotations

import pytest
from conftest import Gateway

from asgi import app
from core.lifecycle import ProviderLifecycle


@pytest.mark.parametrize("path", ["/health", "/api/health"])
def test_health_returns_200_with_components(client, path):
    """Health endpoint returns 200 with status, version, readiness, and components."""
    resp = client.get(path)
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert "version" in data
    assert data["ready"] is True
    assert data["identity_provider"] == "ready"
    assert data["components"]["app"] == "ok"
    assert data["components"]["activity_log"] == "ok"


def test_health_no_auth_required(client):
    """Health endpoint is accessible without a session cookie."""
    resp = client.get("/health", headers={})
    assert resp.status_code == 200


def test_health_reports_not_ready(gateway: Gateway, client, monkeypatch):
    """A lifecycle that has not finished initializing is reported, not hidden."""
    monkeypatch.setattr(app.state, "lifecycle", ProviderLifecycle(lambda: gateway.provider, policy="retry"))
    data = client.get("/health").json()
    assert data["ready"] is False
    assert data["identity_provider"] == "uninitialized"
    assert data["components"]["identity_provider"] == "uninitialized"


def test_health_reports_init_snapshot(client):
    """Initialization attempts and the last error class are exposed for operators."""
    data = client.get("/health").json()
    assert data["init_attempts"] == 1
    assert data["init_last_error"] is None
    assert data["pending_activity_writes"] == 0


def test_health_reports_failed_initialization(client, monkeypatch):
    """A failed attempt shows up as the exception class name, never its message."""

    def _broken():
        raise RuntimeError("private key mismatch for service account")

    lifecycle = ProviderLifecycle(_broken, policy="retry")
    with pytest.raises(RuntimeError):
        lifecycle.initialize()
    monkeypatch.setattr(app.state, "lifecycle", lifecycle)

    data = client.get("/health").json()
    assert data["ready"] is False
    assert data["identity_provider"] == "failed"
    assert data["init_attempts"] == 1
    assert data["init_last_error"] == "RuntimeError"
    assert "private key" not in str(data)
