"""
auth/dependencies.py -- FastAPI Depends() adapters for the authorization guards.

The guards in auth/guards.py are framework-free. This module is the FastAPI
variant of the GuardContext contract:
  read session principal  -> request.session (Starlette SessionMiddleware)
  attach principal        -> request.state.principal
  short-circuit           -> raise GuardDenied, rendered by the handler that
                             api/main.py registers as {"success": false, "message": ...}

Dependencies:
  authenticated_principal()  -- 401 unless the session marker is set.
  administrator_principal()  -- 401, then 403 unless role >= admin.
  elevated_principal()       -- 401, then 403 unless role is super_admin.

try_get_session_principal() is the soft variant used by pages and templates.

Layer rule: no imports from api/, web/, or core/.
  auth/dependencies.py may import from fastapi because it is part of the
  FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from auth.guards import Denial, Guard, require_administrator, require_authenticated, require_elevated, run_guard
from auth.models import SessionPrincipal
from auth.session import read_session_principal


class GuardDenied(Exception):
    """Raised by the dependencies below; carries the guard's Denial."""

    def __init__(self, denial: Denial) -> None:
        super().__init__(denial.message)
        self.denial = denial


class RequestGuardContext:
    """GuardContext over a Starlette request."""

    def __init__(self, request: Request) -> None:
        self._request = request

    def read_session_principal(self) -> Optional[SessionPrincipal]:
        if "session" not in self._request.scope:
            return None
        return read_session_principal(self._request.session)

    def attach_principal(self, principal: SessionPrincipal) -> None:
        self._request.state.principal = principal


def try_get_session_principal(request: Request) -> Optional[SessionPrincipal]:
    """Return the authenticated session principal, or None. Never raises."""
    sp = RequestGuardContext(request).read_session_principal()
    if sp is None or sp.is_authenticated is not True:
        return None
    return sp


def _enforce(guard: Guard, request: Request) -> SessionPrincipal:
    denial = run_guard(guard, RequestGuardContext(request))
    if denial is not None:
        raise GuardDenied(denial)
    return request.state.principal


def authenticated_principal(request: Request) -> SessionPrincipal:
    """Require an authenticated session.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: SessionPrincipal = Depends(authenticated_principal)): ...
    """
    return _enforce(require_authenticated, request)


def administrator_principal(request: Request) -> SessionPrincipal:
    """Require an authenticated admin or super_admin."""
    return _enforce(require_administrator, request)


def elevated_principal(request: Request) -> SessionPrincipal:
    """Require an authenticated super_admin. 401 comes before 403."""
    return _enforce(require_elevated, request)
