"""
core/errors.py -- Exception taxonomy shared by every PageGate layer.

Each handled error carries a machine-readable code and the HTTP status the
API layer renders it with. api/main.py turns any GatewayError into the
standard {"error": {"code", "message"}} envelope; route handlers just raise.

ConfigurationFatal is the exception to that rule: it is never rendered as a
response. It aborts startup because no request can be served safely without
a configured identity provider.

Layer rule: core/ is the kernel. No imports from api/, web/, auth/, activity/.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for errors the gateway recovers into a structured response."""

    code = "gateway_error"
    status_code = 500
    default_message = "Request could not be completed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationFailed(GatewayError):
    """The identity assertion was rejected. Client-caused, never retried."""

    code = "authentication_failed"
    status_code = 401
    default_message = "Authentication failed."


class Unauthenticated(GatewayError):
    """No valid session credential. The client must authenticate again."""

    code = "unauthenticated"
    status_code = 401
    default_message = "Authentication required."


class UpstreamUnavailable(GatewayError):
    """The identity provider could not be reached. Retryable by the caller."""

    code = "upstream_unavailable"
    status_code = 503
    default_message = "Identity provider unavailable. Try again later."


class NotFound(GatewayError):
    code = "not_found"
    status_code = 404
    default_message = "Page not found."


class ServiceNotReady(GatewayError):
    """The identity provider client is not initialized yet."""

    code = "service_not_ready"
    status_code = 503
    default_message = "Service is starting. Try again later."


class ConfigurationFatal(Exception):
    """Required startup configuration is missing or unusable."""
