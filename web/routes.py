"""
web/routes.py -- Jinja2 template routes for the MemberPortal web UI.

These routes serve server-rendered HTML. They share app.state.user_store with
the API routes but return HTML and redirects instead of JSON.

Every protected page runs through _gate(), the server-side driver of
auth.access_gate.evaluate(). Both lookups (principal and application) have
completed by the time the gate runs, so LOADING never occurs here. The gate's
outcome maps to:
  UNAUTHENTICATED   -> 302 /login?next={path}
  PENDING_APPROVAL  -> 302 /pending-approval (or render it when already there)
  DENIED            -> 403 page rendered in place, no redirect
  AUTHORIZED        -> the page

Routes:
  GET  /                   -- redirect to /dashboard
  GET  /dashboard          -- member home (approved members)
  GET  /pending-approval   -- approval status page
  GET  /admin              -- admin console (super_admin)
  GET  /login              -- login form
  POST /login              -- handle password login
  POST /logout             -- clear session, redirect /login
  GET  /setup              -- first-run wizard
  POST /setup              -- create the initial super administrator
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import IntegrityError

from auth.access_gate import LOGIN_PATH, GateInputs, GateState, Query, RouteRequirement, evaluate
from auth.dependencies import try_get_session_principal
from auth.identity import authenticate, provision_initial_administrator
from auth.models import Application, ApplicationStatus, Principal
from auth.session import clear_session_principal, session_principal_for, write_session_principal
from auth.store import UserStore

logger = logging.getLogger("memberportal.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# layout.html calls this to decide which nav links to show.
templates.env.globals["try_get_session_principal"] = try_get_session_principal
router = APIRouter()

# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= query params on /login [M3].
# The raw query param is NEVER passed to templates.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid username or password.",
    "setup_complete": "Setup already complete. Please log in.",
}


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths. [C2]

    Rejects absolute URLs and protocol-relative "//host" forms, which would
    send the member off-site after login.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return "/dashboard"


@dataclass
class _GateResult:
    response: Optional[Response] = None
    principal: Optional[Principal] = None
    application: Optional[Application] = None
    state: Optional[GateState] = None


def _gate(request: Request, requirement: RouteRequirement = RouteRequirement.NONE) -> _GateResult:
    """Load identity and application for this request and run the access gate.

    Call at the top of protected handlers:
        gate = _gate(request)
        if gate.response is not None:
            return gate.response
    """
    user_store: UserStore = request.app.state.user_store
    principal: Optional[Principal] = None
    sp = try_get_session_principal(request)
    if sp is not None:
        principal = user_store.get_by_id(sp.id)
        if principal is None or not principal.is_active:
            clear_session_principal(request.session)
            principal = None

    application: Optional[Application] = None
    if principal is not None and requirement is RouteRequirement.NONE:
        application = user_store.get_application_for_user(principal.id)

    path = request.url.path
    decision = evaluate(
        GateInputs(
            identity=Query(principal),
            application=Query(application),
            requirement=requirement,
            path=path,
        )
    )
    result = _GateResult(principal=principal, application=application, state=decision.state)
    if decision.redirect_to == LOGIN_PATH:
        result.response = RedirectResponse(f"{LOGIN_PATH}?next={path}", status_code=302)
    elif decision.redirect_to is not None:
        result.response = RedirectResponse(decision.redirect_to, status_code=302)
    elif decision.state is GateState.DENIED:
        result.response = templates.TemplateResponse(request, "denied.html", {"principal": principal}, status_code=403)
    return result


# ---------------------------------------------------------------------------
# Protected pages
# ---------------------------------------------------------------------------


@router.get("/")
def index() -> RedirectResponse:
    return RedirectResponse("/dashboard", status_code=302)


@router.get("/dashboard", response_class=HTMLResponse)
def dashboard(request: Request) -> Response:
    gate = _gate(request)
    if gate.response is not None:
        return gate.response
    return templates.TemplateResponse(request, "dashboard.html", {"principal": gate.principal})


@router.get("/pending-approval", response_class=HTMLResponse)
def pending_approval(request: Request) -> Response:
    """Approval status page.

    Reachable while unapproved (the gate does not redirect a page to itself)
    and still viewable once approved, when it links on to the dashboard.
    """
    gate = _gate(request)
    if gate.response is not None:
        return gate.response
    return templates.TemplateResponse(
        request,
        "pending_approval.html",
        {
            "principal": gate.principal,
            "application": gate.application,
            "approved": gate.state is GateState.AUTHORIZED,
        },
    )


@router.get("/admin", response_class=HTMLResponse)
def admin_console(request: Request) -> Response:
    gate = _gate(request, RouteRequirement.ADMIN)
    if gate.response is not None:
        return gate.response
    user_store: UserStore = request.app.state.user_store
    return templates.TemplateResponse(
        request,
        "admin.html",
        {
            "principal": gate.principal,
            "applications": user_store.list_applications(ApplicationStatus.PENDING),
        },
    )


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> Response:
    if try_get_session_principal(request) is not None:
        return RedirectResponse("/dashboard", status_code=302)

    # Map ?error= query param through whitelist [M3]
    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""))
    return templates.TemplateResponse(
        request,
        "login.html",
        {"error_msg": error_msg, "next": _safe_next(request.query_params.get("next"))},
    )


@router.post("/login", response_class=HTMLResponse)
async def login_post(
    request: Request,
    username: str = Form(...),
    password: str = Form(""),
    next: str = Form("/dashboard"),
) -> RedirectResponse:
    """Handle the login form. Same redirect for every kind of failure."""
    user_store: UserStore = request.app.state.user_store
    principal = await authenticate(user_store, username, password)  # [C1]
    if principal is None:
        return RedirectResponse("/login?error=bad_credentials", status_code=302)

    request.session.clear()
    write_session_principal(request.session, session_principal_for(principal))
    resp = RedirectResponse(_safe_next(next), status_code=302)  # [C2]
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    clear_session_principal(request.session)
    return RedirectResponse("/login", status_code=302)


# ---------------------------------------------------------------------------
# First-run setup
# ---------------------------------------------------------------------------


@router.get("/setup", response_class=HTMLResponse)
def setup_form(request: Request) -> HTMLResponse:
    """Render the first-run setup wizard. 404 once a super administrator exists."""
    if not getattr(request.app.state, "setup_required", True):
        raise HTTPException(status_code=404)
    return templates.TemplateResponse(request, "setup.html", {})


@router.post("/setup", response_class=HTMLResponse)
async def setup_post(
    request: Request,
    username: str = Form(...),
    email: str = Form(""),
    full_name: str = Form(""),
    password: str = Form(...),
    confirm_password: str = Form(...),
) -> Response:
    """Create the initial super administrator and sign them in.

    [M1] Re-checks the database even though the middleware already checked
    setup_required: two concurrent posts could both pass the flag. The
    unique username constraint settles the remaining race.
    """
    user_store: UserStore = request.app.state.user_store

    if user_store.has_super_admin():
        request.app.state.setup_required = False
        return RedirectResponse("/login?error=setup_complete", status_code=302)

    error_msg = None
    if not username.strip():
        error_msg = "Username is required."
    elif password != confirm_password:
        error_msg = "Passwords do not match."
    elif len(password) < 8:
        error_msg = "Password must be at least 8 characters."
    if error_msg:
        return templates.TemplateResponse(request, "setup.html", {"error_msg": error_msg}, status_code=400)

    try:
        admin = await provision_initial_administrator(
            user_store,
            username=username.strip(),
            password=password,
            email=email.strip(),
            full_name=full_name.strip(),
        )
    except IntegrityError:
        return RedirectResponse("/login?error=setup_complete", status_code=302)
    request.app.state.setup_required = False

    request.session.clear()
    write_session_principal(request.session, session_principal_for(admin))
    return RedirectResponse("/admin", status_code=302)
