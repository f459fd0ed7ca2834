"""
api/main.py -- FastAPI application entry point for MemberPortal.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- one access-log line per request
  2. setup_redirect        -- first-run redirect to /setup
  3. SessionMiddleware     -- signed cookie session holding the session principal
  4. CORSMiddleware        -- adds CORS headers for allowed browser origins
  5. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan opens the user store on startup and disposes it on shutdown.

Error envelope: every error body is {"success": false, "message": ...}, the
shape the guards emit, so clients parse one format regardless of which layer
refused the request.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.models import HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from auth.dependencies import GuardDenied
from auth.errors import StorageFailure
from auth.store import UserStore
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("memberportal.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the user store and compute the first-run flag; dispose on shutdown."""
    logger.info("MemberPortal starting up")
    app.state.user_store = UserStore(_settings.database_url)
    app.state.setup_required = not app.state.user_store.has_super_admin()
    logger.info("Auth initialized (setup_required=%s)", app.state.setup_required)

    yield

    app.state.user_store.close()
    logger.info("MemberPortal shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="MemberPortal API",
    description="Member association portal: sessions, administrator console and membership approval.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps middleware so that the LAST one added is the OUTERMOST.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

# The session store. The session principal written at login lives here;
# httponly is always on in Starlette, same_site=lax blocks cross-site POSTs.
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    session_cookie=_settings.session_cookie,
    max_age=_settings.session_max_age,
    same_site="lax",
    https_only=_settings.secure_cookies,
)


# ---------------------------------------------------------------------------
# Setup redirect middleware
#
# While no super_admin exists, every request goes to /setup so the first
# administrator is created before anything else is reachable.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def setup_redirect(request: Request, call_next):
    """Redirect all requests to /setup during first run.

    setup_required is an in-memory flag set in lifespan and cleared by
    POST /setup. POST /setup re-checks the database before provisioning so
    two concurrent setup posts cannot both create an administrator [M1].
    """
    path = request.url.path
    if getattr(request.app.state, "setup_required", False):
        exempt = ("/setup", "/api/v1/health")
        if path not in exempt and not path.startswith("/static/"):
            return RedirectResponse("/setup", status_code=302)
    return await call_next(request)


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
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _envelope(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


@app.exception_handler(GuardDenied)
async def guard_denied_handler(request: Request, exc: GuardDenied) -> JSONResponse:
    """401/403 from the authorization guards, body exactly as the guard built it."""
    return JSONResponse(status_code=exc.denial.status_code, content=exc.denial.body())


@app.exception_handler(StorageFailure)
async def storage_failure_handler(request: Request, exc: StorageFailure) -> JSONResponse:
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc, exc_info=exc.__cause__)
    return _envelope(500, "internal server error")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _envelope(422, "request validation failed")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _envelope(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _envelope(500, "internal server error")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
