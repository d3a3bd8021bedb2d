"""
tests/test_session_login.py -- Integration tests for POST /sessionLogin and /sessionLogout.

These tests exercise the full stack: FastAPI routing -> CredentialIssuer ->
fake identity provider -> cookie transport -> detached activity write.

Coverage:
  - Valid assertion: 200 {"status": "success"}, httpOnly cookie, one "login" entry
  - The minted cookie opens protected pages
  - Bad or missing assertion: 401, no cookie, no log entry
  - Provider unreachable: 503, no cookie, no log entry
  - /api prefix alias
  - Logout: GET redirects to "/", POST answers 200; both clear the cookie
"""

from __future__ import annotations

import time

from conftest import Gateway, new_subject, wait_for_count
from fastapi.testclient import TestClient


def _set_cookie_headers(resp) -> list[str]:
    return [v for k, v in resp.headers.multi_items() if k.lower() == "set-cookie"]


class TestSessionLoginSuccess:
    def test_login_sets_http_only_session_cookie(self, gateway: Gateway, client: TestClient) -> None:
        """POST /sessionLogin with a valid assertion must set the session cookie with the normative attributes."""
        subject = new_subject()
        assertion = gateway.provider.add_assertion(subject)

        resp = client.post("/sessionLogin", json={"idToken": assertion})

        assert resp.status_code == 200, resp.text
        assert resp.json() == {"status": "success"}
        cookies = [h for h in _set_cookie_headers(resp) if h.startswith("session=")]
        assert len(cookies) == 1, f"Expected one session cookie, got: {_set_cookie_headers(resp)}"
        header = cookies[0].lower()
        assert "httponly" in header
        assert "path=/" in header
        assert "samesite=lax" in header
        assert "max-age=432000" in header
        assert "secure" not in header, "Secure must only be set in production"
        assert resp.headers["cache-control"] == "no-store"

    def test_login_records_exactly_one_login_entry(self, gateway: Gateway, client: TestClient) -> None:
        """A successful login must produce exactly one {subject, action: "login"} entry."""
        subject = new_subject()
        assertion = gateway.provider.add_assertion(subject)

        resp = client.post("/sessionLogin", json={"idToken": assertion})
        assert resp.status_code == 200

        assert wait_for_count(gateway.store, subject, 1) == 1
        time.sleep(0.05)
        entries = gateway.store.history(subject, 10)
        assert [(e.subject, e.action) for e in entries] == [(subject, "login")]

    def test_minted_cookie_opens_protected_page(self, gateway: Gateway, client: TestClient) -> None:
        """Round trip: the cookie returned by login must pass the page-class gate."""
        subject = new_subject()
        assertion = gateway.provider.add_assertion(subject)
        client.post("/sessionLogin", json={"idToken": assertion})

        resp = client.get("/dashboard")  # cookie jar now holds the session
        assert resp.status_code == 200
        assert "<h1>Dashboard</h1>" in resp.text

    def test_login_under_api_prefix(self, gateway: Gateway, client: TestClient) -> None:
        """The /api alias must behave exactly like the root route."""
        assertion = gateway.provider.add_assertion(new_subject())
        resp = client.post("/api/sessionLogin", json={"idToken": assertion})
        assert resp.status_code == 200
        assert resp.json() == {"status": "success"}


class TestSessionLoginFailure:
    def test_invalid_assertion_returns_401_without_cookie(self, gateway: Gateway, client: TestClient) -> None:
        resp = client.post("/sessionLogin", json={"idToken": "not-a-real-assertion"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "authentication_failed"
        assert not any(h.startswith("session=") for h in _set_cookie_headers(resp))

    def test_missing_id_token_returns_401(self, client: TestClient) -> None:
        """A body without idToken is an authentication failure, not a validation error."""
        resp = client.post("/sessionLogin", json={})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "authentication_failed"

    def test_failed_login_records_nothing(self, gateway: Gateway, client: TestClient) -> None:
        """A rejected assertion must never produce a login entry."""
        subject = new_subject()
        gateway.provider.add_assertion(subject)
        client.post("/sessionLogin", json={"idToken": "assertion-unknown"})
        time.sleep(0.05)
        assert gateway.store.count(subject) == 0

    def test_provider_unreachable_returns_503_without_cookie_or_log(
        self, gateway: Gateway, client: TestClient
    ) -> None:
        """Provider outage during login: 503, no cookie, no log entry."""
        subject = new_subject()
        assertion = gateway.provider.add_assertion(subject)
        gateway.provider.unreachable = True
        try:
            resp = client.post("/sessionLogin", json={"idToken": assertion})
        finally:
            gateway.provider.unreachable = False

        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "upstream_unavailable"
        assert not any(h.startswith("session=") for h in _set_cookie_headers(resp))
        time.sleep(0.05)
        assert gateway.store.count(subject) == 0


class TestSessionLogout:
    def test_get_logout_redirects_and_clears_cookie(self, client: TestClient) -> None:
        resp = client.get("/sessionLogout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        cleared = [h.lower() for h in _set_cookie_headers(resp) if h.startswith("session=")]
        assert cleared and ("max-age=0" in cleared[0] or "expires=" in cleared[0])

    def test_post_logout_returns_200_and_clears_cookie(self, client: TestClient) -> None:
        resp = client.post("/sessionLogout")
        assert resp.status_code == 200
        assert resp.json() == {"status": "logged_out"}
        assert any(h.startswith("session=") for h in _set_cookie_headers(resp))
