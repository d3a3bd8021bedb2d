"""
auth/dependencies.py -- The Admission Gate: FastAPI Depends() guards for protected routes.

Every protected route names its caller class explicitly by picking one of two
dependencies. Nothing is inferred from Accept or X-Requested-With headers:

  require_api_session  -- machine callers. Rejection is a structured 401 JSON.
  require_page_session -- browser callers. Rejection is a 302 to "/".

Gate order:
  1. Provider lifecycle not ready -> ServiceNotReady (503 for both classes).
  2. Session cookie verified by CredentialVerifier (fresh provider round trip
     on every request -- results are never cached).
  3. Rejected -> AdmissionDenied carrying the caller class. api/main.py renders
     it and also clears a stale cookie if one was presented.
  4. Accepted -> Principal stored on request.state.principal and returned.

Layer rule: no imports from web/ or activity/. This module may import from
fastapi because it is part of the dependency injection system.
"""

from __future__ import annotations

from enum import Enum
from typing import Awaitable, Callable

from fastapi import Request

from auth.models import Principal
from auth.sessions import SESSION_COOKIE
from core.errors import ServiceNotReady, Unauthenticated


class CallerClass(str, Enum):
    API = "api"
    PAGE = "page"


class AdmissionDenied(Exception):
    """Raised by the gate when a protected request has no valid session."""

    def __init__(self, caller_class: CallerClass, reason: Unauthenticated, stale_cookie: bool) -> None:
        self.caller_class = caller_class
        self.reason = reason
        self.stale_cookie = stale_cookie
        super().__init__(reason.message)


def admission_gate(caller_class: CallerClass) -> Callable[[Request], Awaitable[Principal]]:
    """Build the gate dependency for one caller class.

    Use as a FastAPI dependency:
        @router.get("/activity-history")
        async def route(principal: Principal = Depends(require_api_session)): ...
    """

    async def gate(request: Request) -> Principal:
        if not request.app.state.lifecycle.is_ready:
            raise ServiceNotReady()
        credential = request.cookies.get(SESSION_COOKIE, "")
        try:
            principal = await request.app.state.verifier.verify(credential)
        except Unauthenticated as exc:
            raise AdmissionDenied(caller_class, exc, stale_cookie=bool(credential)) from exc
        request.state.principal = principal
        return principal

    gate.__name__ = f"require_{caller_class.value}_session"
    return gate


require_api_session = admission_gate(CallerClass.API)
require_page_session = admission_gate(CallerClass.PAGE)
