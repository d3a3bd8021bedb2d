"""
auth/provider.py -- Identity provider contract and its Firebase implementation.

The gateway keeps no password store and no user table. Every identity decision
is delegated to the provider through three calls:

  verify_assertion(assertion)          -> Principal | AuthenticationFailed
  mint_credential(assertion, lifetime) -> credential | AuthenticationFailed
  verify_credential(credential)        -> Principal | Unauthenticated

Either call may also raise UpstreamUnavailable when the provider cannot be
reached. Provider exceptions never leak past this module -- callers only ever
see the core/errors.py taxonomy.

firebase-admin is synchronous (it does blocking HTTP for key fetches and
revocation checks). auth/sessions.py runs these methods in the thread pool so
the event loop is never blocked.

Security notes:
  [A1] Session creation requires a recent sign-in. An ID token whose auth_time
       is older than max_auth_age is rejected, so a stolen but still valid ID
       token cannot be upgraded into a multi-day session.
  [A2] Credential verification always checks revocation. A credential for a
       disabled user or one whose refresh tokens were revoked is rejected even
       before its expiry.

Layer rule: no imports from api/, web/, or activity/. Import from core/ is
allowed -- core/ is the kernel layer.
"""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from typing import TYPE_CHECKING, Protocol

import firebase_admin
from firebase_admin import auth, credentials, exceptions

from auth.models import Principal
from core.errors import AuthenticationFailed, ConfigurationFatal, Unauthenticated, UpstreamUnavailable

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("pagegate.auth.provider")

_APP_NAME = "pagegate"
_MAX_AUTH_AGE = 5 * 60  # [A1]

# Client-caused rejections. Everything else derived from FirebaseError is a
# provider-side or transport fault.
_REJECTED = (
    ValueError,
    exceptions.InvalidArgumentError,
    auth.UserDisabledError,
    auth.UserNotFoundError,
)


class IdentityProvider(Protocol):
    """Contract the gateway needs from an identity provider."""

    def verify_assertion(self, assertion: str) -> Principal: ...

    def mint_credential(self, assertion: str, lifetime: timedelta) -> str: ...

    def verify_credential(self, credential: str, check_revoked: bool = True) -> Principal: ...


class FirebaseIdentityProvider:
    """IdentityProvider backed by the Firebase Admin SDK.

    Usage:
        provider = initialize_firebase(get_settings())
        principal = provider.verify_assertion(id_token)
        cookie = provider.mint_credential(id_token, timedelta(days=5))
        principal = provider.verify_credential(cookie)
    """

    def __init__(self, app: firebase_admin.App | None = None, max_auth_age: int = _MAX_AUTH_AGE) -> None:
        self._app = app
        self._max_auth_age = max_auth_age

    def verify_assertion(self, assertion: str) -> Principal:
        try:
            claims = auth.verify_id_token(assertion, app=self._app)
        except _REJECTED as exc:
            raise AuthenticationFailed() from exc
        except exceptions.FirebaseError as exc:
            logger.warning("ID token verification could not reach the provider: %s", type(exc).__name__)
            raise UpstreamUnavailable() from exc

        auth_time = claims.get("auth_time")
        if auth_time is None or time.time() - int(auth_time) > self._max_auth_age:  # [A1]
            raise AuthenticationFailed("Recent sign-in required.")
        try:
            return Principal.from_claims(claims)
        except ValueError as exc:
            raise AuthenticationFailed() from exc

    def mint_credential(self, assertion: str, lifetime: timedelta) -> str:
        try:
            cookie = auth.create_session_cookie(assertion, expires_in=lifetime, app=self._app)
        except _REJECTED as exc:
            raise AuthenticationFailed() from exc
        except exceptions.FirebaseError as exc:
            logger.warning("Session cookie minting could not reach the provider: %s", type(exc).__name__)
            raise UpstreamUnavailable() from exc
        return cookie.decode("utf-8") if isinstance(cookie, bytes) else cookie

    def verify_credential(self, credential: str, check_revoked: bool = True) -> Principal:
        try:
            claims = auth.verify_session_cookie(credential, check_revoked=check_revoked, app=self._app)  # [A2]
        except _REJECTED as exc:
            raise Unauthenticated() from exc
        except exceptions.FirebaseError as exc:
            raise UpstreamUnavailable() from exc
        try:
            return Principal.from_claims(claims)
        except ValueError as exc:
            raise Unauthenticated() from exc


def initialize_firebase(settings: Settings) -> FirebaseIdentityProvider:
    """Build the process-wide Firebase app once and wrap it.

    Reuses an already-initialized app of the same name, so calling this twice
    in one process (a retry after a partial failure, the CLI check command)
    never trips firebase_admin's duplicate-app ValueError.

    Raises ConfigurationFatal when the service-account variables are missing or
    the private key cannot be parsed.
    """
    info = settings.identity_provider_credentials()
    try:
        app = firebase_admin.get_app(_APP_NAME)
    except ValueError:
        try:
            cert = credentials.Certificate(info)
        except ValueError as exc:
            raise ConfigurationFatal("Identity provider service-account key could not be parsed") from exc
        app = firebase_admin.initialize_app(cert, {"projectId": info["project_id"]}, name=_APP_NAME)
        logger.info("Firebase app initialized for project %s", info["project_id"])
    return FirebaseIdentityProvider(app)
