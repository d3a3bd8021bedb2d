"""
api/routes/session.py -- Session login and logout endpoints.

Routes:
  POST /sessionLogin   -- exchange {"idToken": ...} for the session cookie
  GET  /sessionLogout  -- clear the cookie, redirect to "/" (browser link)
  POST /sessionLogout  -- clear the cookie, 200 JSON (fetch/XHR callers)

Auth policy: all three are public. Login consumes an identity assertion
instead of a session; clearing a cookie needs no prior auth.

Security:
  [H2] POST /sessionLogin is rate-limited per IP (LOGIN_RATE_LIMIT).
  [M5] Cache-Control: no-store on login responses.
  Failures are raised as core/errors.py exceptions and rendered by the
  GatewayError handler in api/main.py: 401 for a bad or missing assertion,
  503 when the provider is unreachable or not initialized. No cookie is set
  on any failure path.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter, login_rate_limit
from api.models import SessionLoginRequest, StatusResponse
from auth.sessions import CredentialIssuer, clear_session_cookie, set_session_cookie

router = APIRouter()


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/sessionLogin", response_model=StatusResponse)
async def session_login(request: Request, body: SessionLoginRequest) -> JSONResponse:
    """Verify the identity assertion, mint a session credential, set it as a cookie.

    The "login" activity entry is scheduled by the issuer after the credential
    is minted; this response does not wait for that write.
    """
    issuer: CredentialIssuer = request.app.state.issuer
    session = await issuer.issue(body.id_token)
    resp = JSONResponse(content=StatusResponse(status="success").model_dump())
    set_session_cookie(resp, session.credential, session.max_age)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/sessionLogout")
async def session_logout_redirect() -> RedirectResponse:
    """Clear the session cookie and send the browser back to the entry page."""
    resp = RedirectResponse("/", status_code=302)
    clear_session_cookie(resp)
    return resp


@router.post("/sessionLogout", response_model=StatusResponse)
async def session_logout() -> JSONResponse:
    """Clear the session cookie and end the session."""
    resp = JSONResponse(content=StatusResponse(status="logged_out").model_dump())
    clear_session_cookie(resp)
    return resp
