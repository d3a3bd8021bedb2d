"""
asgi.py -- Application assembly for PageGate.

This is the ONLY file that imports from both api/ and web/. It joins the two
independent layers into a single ASGI app without coupling them to each other.
api/main.py knows nothing about web/routes.py; web/routes.py knows nothing about api/.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from fastapi.staticfiles import StaticFiles

from api.main import app
from core.config import get_settings
from web.routes import build_router

_settings = get_settings()

# The protected allow-list is fixed here, at startup. One route per name.
_web_router = build_router(_settings.protected_pages)
app.include_router(_web_router, tags=["Web UI"])
# Same pages under the /api prefix, matching the API alias in api/main.py.
app.include_router(_web_router, prefix="/api", include_in_schema=False)
app.mount("/static", StaticFiles(directory=str(_settings.public_dir)), name="static")
