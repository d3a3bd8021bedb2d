"""
auth/sessions.py -- Session credential issuance, verification, and cookie transport.

CredentialIssuer turns a short-lived identity assertion into a long-lived
session credential. CredentialVerifier re-validates that credential with the
provider on every protected request. The server keeps no session table: the
credential lives only in the client's cookie.

Security design decisions:
  [S1] Lifetimes are clamped to [MIN_SESSION_LIFETIME, MAX_SESSION_LIFETIME]
       no matter what the caller asks for.
  [S2] Verification fails closed. Any fault while verifying -- provider
       unreachable, client not initialized, malformed claims -- is reported as
       Unauthenticated, never as a pass.
  [S3] A credential whose expiry is at or before "now" is rejected even if the
       provider accepted it (clock skew between provider and gateway).
  [S4] A started exchange runs to completion even if the client disconnects.
       Once the provider has minted a credential it is valid, so the login is
       logged regardless of whether the client is still there to receive it.
       A failure nobody is waiting for any more is logged as a warning.

Cookie attributes:
  httponly=True  -- JS cannot read the cookie (XSS mitigation).
  samesite="lax" -- sent on top-level navigations, including the one that
                    returns from a cross-site identity provider redirect.
                    "strict" would drop it there.
  secure         -- only in production (ENVIRONMENT=production).
  path="/"       -- every route sees it.
  max_age        -- equals the minted lifetime so cookie and credential expire together.

Layer rule: no imports from api/ or web/. activity/ is referenced for type
checking only; the issuer receives its activity log from the app lifespan.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable

from fastapi.concurrency import run_in_threadpool

from auth.models import IssuedSession, Principal
from core.config import MAX_SESSION_LIFETIME, MIN_SESSION_LIFETIME, get_settings
from core.errors import AuthenticationFailed, Unauthenticated

if TYPE_CHECKING:
    from activity.log import ActivityLog
    from auth.provider import IdentityProvider
    from core.lifecycle import ProviderLifecycle

logger = logging.getLogger("pagegate.auth")

SESSION_COOKIE = "session"
LOGIN_ACTION = "login"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp_lifetime(seconds: int | None, default: int) -> int:
    """Return a session lifetime within the allowed bounds [S1]."""
    value = seconds if seconds and seconds > 0 else default
    return max(MIN_SESSION_LIFETIME, min(value, MAX_SESSION_LIFETIME))


def _log_abandoned_exchange(task: asyncio.Task) -> None:
    """Collect the outcome of an exchange whose caller went away."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Login exchange finished after the client disconnected: %s", type(exc).__name__)


def login_event_key(credential: str) -> str:
    """Idempotency key for the login activity entry of one minted credential.

    Derived from a digest of the credential, so a retried log write for the
    same login collides on the UNIQUE event_key instead of duplicating.
    """
    return "login-" + hashlib.sha256(credential.encode("utf-8")).hexdigest()[:40]


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------


class CredentialIssuer:
    """Exchange an identity assertion for a session credential.

    Usage:
        issuer = CredentialIssuer(lifecycle, activity_log, default_lifetime=432000)
        session = await issuer.issue(id_token)
        set_session_cookie(response, session.credential, session.max_age)
    """

    def __init__(
        self,
        lifecycle: ProviderLifecycle[IdentityProvider],
        activity: ActivityLog,
        default_lifetime: int,
    ) -> None:
        self._lifecycle = lifecycle
        self._activity = activity
        self._default_lifetime = default_lifetime

    async def issue(self, assertion: str, lifetime: int | None = None) -> IssuedSession:
        """Verify the assertion, mint a credential, schedule the login entry.

        Raises:
            AuthenticationFailed: assertion missing, invalid, expired or stale.
            UpstreamUnavailable:  provider unreachable.
            ServiceNotReady:      provider client not initialized yet.
        """
        if not assertion or not assertion.strip():
            raise AuthenticationFailed("Missing identity assertion.")
        provider = self._lifecycle.provider
        seconds = clamp_lifetime(lifetime, self._default_lifetime)

        # [S4] shield: cancelling this request does not cancel the exchange.
        exchange = asyncio.ensure_future(self._exchange(provider, assertion.strip(), seconds))
        try:
            return await asyncio.shield(exchange)
        except asyncio.CancelledError:
            exchange.add_done_callback(_log_abandoned_exchange)
            raise

    async def _exchange(self, provider: IdentityProvider, assertion: str, seconds: int) -> IssuedSession:
        principal = await run_in_threadpool(provider.verify_assertion, assertion)
        credential = await run_in_threadpool(provider.mint_credential, assertion, timedelta(seconds=seconds))
        # Sequenced after a successful mint; completion is not awaited.
        self._activity.record_detached(principal.subject, LOGIN_ACTION, event_key=login_event_key(credential))
        logger.info("Session issued for subject=%s lifetime=%ds", principal.subject, seconds)
        return IssuedSession(credential=credential, principal=principal, max_age=seconds)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class CredentialVerifier:
    """Re-validate a session credential against the provider. Idempotent, no side effects."""

    def __init__(
        self,
        lifecycle: ProviderLifecycle[IdentityProvider],
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._lifecycle = lifecycle
        self._clock = clock

    async def verify(self, credential: str) -> Principal:
        """Return the Principal for a valid credential, else raise Unauthenticated.

        An empty string means "no credential presented" and is rejected without
        a provider round trip.
        """
        if not credential:
            raise Unauthenticated()
        try:
            provider = self._lifecycle.provider
            principal = await run_in_threadpool(provider.verify_credential, credential, True)
        except Unauthenticated:
            raise
        except Exception as exc:  # [S2] fail closed
            logger.warning("Session verification failed closed: %s", type(exc).__name__)
            raise Unauthenticated() from exc

        if principal.expires_at is None or principal.expires_at <= self._clock():  # [S3]
            raise Unauthenticated("Session expired.")
        return principal


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, credential: str, max_age: int, secure: bool | None = None) -> None:
    """Write the session credential as an httpOnly cookie on the response."""
    response.set_cookie(
        SESSION_COOKIE,
        value=credential,
        max_age=max_age,
        httponly=True,
        secure=get_settings().secure_cookies if secure is None else secure,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response, secure: bool | None = None) -> None:
    """Delete the session cookie. Attributes must match the ones it was set with."""
    response.delete_cookie(
        SESSION_COOKIE,
        path="/",
        httponly=True,
        secure=get_settings().secure_cookies if secure is None else secure,
        samesite="lax",
    )
