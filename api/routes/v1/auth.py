"""
api/routes/v1/auth.py -- Session login, logout and self-service endpoints.

Routes:
  POST /api/v1/auth/login        -- password login; writes the session principal
  POST /api/v1/auth/logout       -- clears the session principal; 200
  GET  /api/v1/auth/check        -- reports session state (public, never 401)
  GET  /api/v1/auth/me           -- current user profile (requires auth)
  GET  /api/v1/auth/application  -- current user's latest membership application (requires auth)
  POST /api/v1/auth/password     -- change own password (requires auth)

Security:
  [C1] authenticate() provides timing equalization -- use it, never inline
       get_by_username() + verify_password().
  Wrong username, wrong password and deactivated account all produce the same
  401 body.
  [M5] Cache-Control: no-store on login responses.
  The session is cleared before a new principal is written so nothing from an
  earlier session survives a login.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import (
    ApplicationResponse,
    AuthCheckResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PasswordChange,
    SessionUser,
    UserInfo,
)
from auth.dependencies import GuardDenied, authenticated_principal, try_get_session_principal
from auth.guards import UNAUTHORIZED
from auth.identity import authenticate, change_password
from auth.models import Principal, SessionPrincipal
from auth.session import clear_session_principal, session_principal_for, write_session_principal
from auth.store import UserStore

# Auth policy:
# - POST /api/v1/auth/login:        public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:       public -- clearing a session needs no prior auth
# - GET  /api/v1/auth/check:        public -- the client polls it to decide what to render
# - GET  /api/v1/auth/me:           requires auth (authenticated_principal)
# - GET  /api/v1/auth/application:  requires auth (authenticated_principal)
# - POST /api/v1/auth/password:     requires auth (authenticated_principal)
router = APIRouter()


@router.post("/auth/login", response_model=LoginResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password and start a session.

    StorageFailure from the lookup is not caught here; the app-level handler
    turns it into a 500.
    """
    user_store: UserStore = request.app.state.user_store
    principal = await authenticate(user_store, body.username, body.password)
    if principal is None:
        resp = JSONResponse(status_code=401, content={"success": False, "message": "invalid credentials"})
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    request.session.clear()
    write_session_principal(request.session, session_principal_for(principal))
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(user=UserInfo.from_principal(principal)).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request) -> MessageResponse:
    clear_session_principal(request.session)
    return MessageResponse(message="logged out")


@router.get("/auth/check", response_model=AuthCheckResponse)
async def check(request: Request) -> AuthCheckResponse:
    sp = try_get_session_principal(request)
    if sp is None:
        return AuthCheckResponse(is_authenticated=False)
    return AuthCheckResponse(
        is_authenticated=True,
        user=SessionUser(id=sp.id, username=sp.username, role=sp.role),
    )


def load_current_principal(request: Request, sp: SessionPrincipal) -> Principal:
    """Fetch the stored record behind a session principal.

    A session that outlived its account (record gone or deactivated) is
    cleared and treated as unauthenticated.
    """
    user_store: UserStore = request.app.state.user_store
    principal = user_store.get_by_id(sp.id)
    if principal is None or not principal.is_active:
        clear_session_principal(request.session)
        raise GuardDenied(UNAUTHORIZED)
    return principal


@router.get("/auth/me", response_model=UserInfo)
async def me(request: Request, sp: SessionPrincipal = Depends(authenticated_principal)) -> UserInfo:
    return UserInfo.from_principal(load_current_principal(request, sp))


@router.get("/auth/application", response_model=ApplicationResponse)
async def my_application(
    request: Request,
    sp: SessionPrincipal = Depends(authenticated_principal),
) -> ApplicationResponse:
    """Return the caller's most recent membership application, 404 if none."""
    user_store: UserStore = request.app.state.user_store
    application = user_store.get_application_for_user(sp.id)
    if application is None:
        raise HTTPException(status_code=404, detail="No application found for this user")
    return ApplicationResponse.from_application(application)


@router.post("/auth/password", response_model=MessageResponse)
async def update_password(
    request: Request,
    body: PasswordChange,
    sp: SessionPrincipal = Depends(authenticated_principal),
) -> MessageResponse:
    user_store: UserStore = request.app.state.user_store
    principal = load_current_principal(request, sp)
    if not await change_password(user_store, principal, body.current_password, body.new_password):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    return MessageResponse(message="password updated")
