"""
web/routes.py -- Browser-facing page routes for PageGate.

These routes serve static HTML. They share app.state with the API routes (same
provider lifecycle, verifier, resolver) but answer with files and redirects
instead of JSON.

Routes:
  GET /          -- public entry page (login form)
  GET /{name}    -- one route per protected page name (page-class gate)

The protected routes are registered one by one from the allow-list handed to
build_router() at startup. An unknown path never matches a route, so it is a
plain 404 -- it cannot reach the gate, the resolver, or the filesystem.

Every protected route uses require_page_session: an unauthenticated browser is
redirected to "/" rather than shown a raw 401.
"""

from __future__ import annotations

import logging
from typing import Iterable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import FileResponse

from auth.dependencies import require_page_session
from auth.models import Principal
from web.resources import ResourceResolver

logger = logging.getLogger("pagegate.web")


def _resolver(request: Request) -> ResourceResolver:
    return request.app.state.resolver


def _page_handler(name: str):
    async def page(request: Request, principal: Principal = Depends(require_page_session)) -> FileResponse:
        resource = _resolver(request).resolve(name, protected=True)
        logger.debug("Serving protected page %s to subject=%s", name, principal.subject)
        return FileResponse(resource.path, media_type="text/html", headers={"Cache-Control": "no-store"})

    page.__name__ = f"page_{name.replace('-', '_')}"
    return page


def build_router(protected_names: Iterable[str]) -> APIRouter:
    """Return the web router with one gated route per protected page name."""
    router = APIRouter()

    @router.get("/", include_in_schema=False)
    async def index(request: Request) -> FileResponse:
        resource = _resolver(request).resolve("index", protected=False)
        return FileResponse(resource.path, media_type="text/html")

    for name in protected_names:
        router.add_api_route(f"/{name}", _page_handler(name), methods=["GET"], include_in_schema=False)

    return router
