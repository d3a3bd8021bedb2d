"""
api/main.py -- FastAPI application entry point for PageGate.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- credentialed CORS for the configured origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (provider lifecycle, activity store, resolver) and
shutdown (cancel init retries, drain pending activity writes, close the store)
symmetrically.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from activity.log import ActivityLog
from activity.store import ActivityStore
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.protected import router as protected_router
from api.routes.session import router as session_router
from auth.dependencies import AdmissionDenied, CallerClass
from auth.provider import IdentityProvider, initialize_firebase
from auth.sessions import CredentialIssuer, CredentialVerifier, clear_session_cookie
from core.config import Settings, get_settings
from core.errors import GatewayError
from core.lifecycle import ProviderLifecycle
from web.resources import DEFAULT_PUBLIC_PAGES, ResourceResolver

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("pagegate.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def build_lifecycle(settings: Settings) -> ProviderLifecycle[IdentityProvider]:
    """Create the provider lifecycle for the configured policy (not started)."""
    return ProviderLifecycle(
        lambda: initialize_firebase(settings),
        policy=settings.init_policy,
        retry_base_seconds=settings.init_retry_base_seconds,
        retry_cap_seconds=settings.init_retry_cap_seconds,
    )


def wire_state(
    app: FastAPI,
    settings: Settings,
    lifecycle: ProviderLifecycle[IdentityProvider],
    activity_log: ActivityLog,
) -> None:
    """Attach the shared services to app.state.

    Everything stored here is built once and shared read-only by every
    request. Handlers never reinitialize or mutate it.
    """
    app.state.lifecycle = lifecycle
    app.state.activity_log = activity_log
    app.state.verifier = CredentialVerifier(lifecycle)
    app.state.issuer = CredentialIssuer(lifecycle, activity_log, settings.session_lifetime_seconds)
    app.state.resolver = ResourceResolver(
        settings.public_dir,
        settings.protected_dir,
        DEFAULT_PUBLIC_PAGES,
        settings.protected_pages,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Provider lifecycle first. Under fail_fast (and always on a
         ConfigurationFatal) an exception here aborts startup before any
         other resource is opened, so the process never serves traffic.
      2. Activity store second -- the issuer needs it before the first login.
      3. Resolver last -- validates the page allow-list against the disk layout.
    """
    settings = get_settings()
    logger.info(
        "PageGate starting up (environment=%s, init_policy=%s)",
        settings.environment,
        settings.init_policy,
    )
    settings.log_identity_provider_presence()

    lifecycle = build_lifecycle(settings)
    await lifecycle.start()

    activity_log = ActivityLog(ActivityStore(settings.activity_db_url))
    wire_state(app, settings, lifecycle, activity_log)
    logger.info(
        "Readiness: identity_provider=%s protected_pages=%d",
        lifecycle.state.value,
        len(app.state.resolver.protected_names),
    )

    yield

    # Shutdown
    await lifecycle.stop()
    if activity_log.pending:
        logger.info("Draining %d pending activity write(s)", activity_log.pending)
    await activity_log.drain()
    activity_log.store.close()
    logger.info("PageGate shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="PageGate",
    description="Session gateway in front of public and protected static pages.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,  # the session travels as a cookie
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
#
# The API routers answer at the root and again under /api, the prefix used by
# serverless-style frontends. The alias is hidden from the schema.
# ---------------------------------------------------------------------------

app.include_router(session_router, tags=["Session"])
app.include_router(protected_router, tags=["Protected"])
app.include_router(session_router, prefix="/api", include_in_schema=False)
app.include_router(protected_router, prefix="/api", include_in_schema=False)
# Web page router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All JSON handlers return the same ErrorResponse envelope so API clients can
# parse errors uniformly.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(
            exclude_none=True
        ),
    )


@app.exception_handler(AdmissionDenied)
async def admission_denied_handler(request: Request, exc: AdmissionDenied) -> Response:
    """Render a gate rejection according to the route's declared caller class.

    page -> 302 to the public entry page.
    api  -> 401 with the structured error envelope.

    A stale cookie is cleared in either case, otherwise the browser would keep
    presenting a dead credential on every request.
    """
    if exc.caller_class is CallerClass.PAGE:
        resp: Response = RedirectResponse("/", status_code=302)
    else:
        resp = _error_response(401, exc.reason.code, exc.reason.message)
    if exc.stale_cookie:
        clear_session_cookie(resp)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    resp = _error_response(exc.status_code, exc.code, exc.message)
    if exc.status_code == 503:
        resp.headers["Retry-After"] = "5"
    return resp


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a {"code", "message"} dict as
    detail. Use it directly rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# No auth and no rate limit -- load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
@app.get("/api/health", include_in_schema=False)
async def health(request: Request) -> HealthResponse:
    """Return liveness plus the identity provider readiness state."""
    lifecycle: ProviderLifecycle = request.app.state.lifecycle
    activity_log: ActivityLog = request.app.state.activity_log

    components = {"app": "ok", "identity_provider": lifecycle.state.value}
    try:
        components["activity_log"] = "ok" if await run_in_threadpool(activity_log.store.ping) else "error"
    except SQLAlchemyError:
        logger.warning("Health check: activity log store unreachable")
        components["activity_log"] = "error"

    snapshot = lifecycle.snapshot()
    return HealthResponse(
        version=VERSION,
        ready=lifecycle.is_ready,
        identity_provider=snapshot["state"],
        init_attempts=snapshot["attempts"],
        init_last_error=snapshot["last_error"],
        pending_activity_writes=activity_log.pending,
        components=components,
    )
