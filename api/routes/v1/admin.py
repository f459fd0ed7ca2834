"""
api/routes/v1/admin.py -- Admin console endpoints: application review and user management.

Routes:
  GET   /api/v1/admin/applications        -- list applications (admin, optional ?status=)
  PATCH /api/v1/admin/applications/{id}   -- approve or reject (admin)
  GET   /api/v1/admin/users               -- list principals (super_admin)
  PATCH /api/v1/admin/users/{id}          -- change role / is_active (super_admin)

Approving an application also marks the applicant approved and copies the
application's plan onto them, which is what lets the access gate through.

[M4] PATCH /admin/users/{id} refuses:
  - self-deactivation (an administrator locking themselves out),
  - deactivating or demoting the last active super_admin (no recovery path
    without database access).

The session guards only see the role written into the session at login.
Every route here then reloads the caller's record: a deactivated account
gets 401 and its session is cleared, and a demoted one is judged on its
current role, with the session rewritten to match.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import ApplicationResponse, ApplicationReview, ReviewDecisionEnum, UserPatch, UserResponse
from api.routes.v1.auth import load_current_principal
from auth.dependencies import GuardDenied, administrator_principal, elevated_principal
from auth.guards import Denial, Guard, require_administrator, require_elevated
from auth.models import ApplicationStatus, Role, SessionPrincipal
from auth.session import session_principal_for, write_session_principal
from auth.store import UserStore

logger = logging.getLogger("memberportal.api.admin")

# Auth policy:
# - GET   /api/v1/admin/applications:       requires admin (administrator_principal)
# - PATCH /api/v1/admin/applications/{id}:  requires admin (administrator_principal)
# - GET   /api/v1/admin/users:              requires super_admin (elevated_principal)
# - PATCH /api/v1/admin/users/{id}:         requires super_admin (elevated_principal)
# Each is re-checked against the stored record by _recheck().
router = APIRouter()


def _recheck(request: Request, sp: SessionPrincipal, guard: Guard) -> SessionPrincipal:
    """Run guard again on the caller's stored record instead of the session copy."""
    fresh = session_principal_for(load_current_principal(request, sp))
    if fresh != sp:
        write_session_principal(request.session, fresh)
    result = guard(fresh)
    if isinstance(result, Denial):
        raise GuardDenied(result)
    return fresh


def current_administrator(
    request: Request, sp: SessionPrincipal = Depends(administrator_principal)
) -> SessionPrincipal:
    return _recheck(request, sp, require_administrator)


def current_super_admin(request: Request, sp: SessionPrincipal = Depends(elevated_principal)) -> SessionPrincipal:
    return _recheck(request, sp, require_elevated)


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------


@router.get("/admin/applications", response_model=list[ApplicationResponse])
async def list_applications(
    request: Request,
    status: Optional[ApplicationStatus] = None,
    sp: SessionPrincipal = Depends(current_administrator),
) -> list[ApplicationResponse]:
    user_store: UserStore = request.app.state.user_store
    return [ApplicationResponse.from_application(a) for a in user_store.list_applications(status)]


@router.patch("/admin/applications/{application_id}", response_model=ApplicationResponse)
async def review_application(
    request: Request,
    application_id: int,
    body: ApplicationReview,
    sp: SessionPrincipal = Depends(current_administrator),
) -> ApplicationResponse:
    user_store: UserStore = request.app.state.user_store
    status = ApplicationStatus(body.status.value)
    application = user_store.review_application(application_id, status, reviewed_by=sp.id, admin_notes=body.admin_notes)
    if application is None:
        raise HTTPException(status_code=404, detail="Application not found")

    if body.status is ReviewDecisionEnum.approved:
        user_store.update_user(application.user_id, is_approved=True, plan_name=application.plan_name)
    logger.info("Application %s %s by %s", application_id, status.value, sp.username)
    return ApplicationResponse.from_application(application)


# ---------------------------------------------------------------------------
# Users (super_admin only)
# ---------------------------------------------------------------------------


@router.get("/admin/users", response_model=list[UserResponse])
async def list_users(
    request: Request,
    sp: SessionPrincipal = Depends(current_super_admin),
) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.from_principal(p) for p in user_store.list_users()]


@router.patch("/admin/users/{user_id}", response_model=UserResponse)
async def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    sp: SessionPrincipal = Depends(current_super_admin),
) -> UserResponse:
    user_store: UserStore = request.app.state.user_store

    target = user_store.get_by_id(user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")

    updates: dict = {}
    loses_top_tier = (body.role is not None and body.role is not Role.SUPER_ADMIN) or body.is_active is False
    if body.is_active is False and target.id == sp.id:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    if loses_top_tier and target.role is Role.SUPER_ADMIN and target.is_active:
        if user_store.count_active_super_admins() <= 1:
            raise HTTPException(status_code=400, detail="Cannot remove the last active super administrator")

    if body.role is not None:
        updates["role"] = body.role
    if body.is_active is not None:
        updates["is_active"] = body.is_active
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")

    user_store.update_user(user_id, **updates)
    logger.info("User %s updated by %s: %s", user_id, sp.username, sorted(updates))
    updated = user_store.get_by_id(user_id)
    if updated is None:
        raise HTTPException(status_code=500, detail="User not found after write")
    return UserResponse.from_principal(updated)
