"""
auth/guards.py -- Framework-free authorization guards.

A guard takes the session principal (or None) and returns either Allow, which
carries the principal on to the handler, or a Denial with a status code and
message. Guards never raise and never do I/O.

The authentication check always runs before any role check. An anonymous
request to an elevated-only resource is reported as 401, never 403, so the
response does not reveal which resources need elevation.

GuardContext / run_guard() is the interceptor contract: a platform adapter
exposes "read session principal" and "attach principal", and the caller turns
a returned Denial into its own short-circuit response. auth/dependencies.py is
the FastAPI adapter.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional, Protocol, Union

from auth.errors import AuthError, InsufficientRole, Unauthenticated
from auth.models import Role, SessionPrincipal


@dataclass(frozen=True)
class Allow:
    principal: SessionPrincipal


@dataclass(frozen=True)
class Denial:
    status_code: int
    message: str

    @classmethod
    def for_error(cls, error: type[AuthError]) -> Denial:
        return cls(status_code=error.status_code, message=error.message)

    def body(self) -> dict:
        return {"success": False, "message": self.message}


GuardResult = Union[Allow, Denial]
Guard = Callable[[Optional[SessionPrincipal]], GuardResult]

UNAUTHORIZED = Denial.for_error(Unauthenticated)
FORBIDDEN = Denial.for_error(InsufficientRole)


def require_authenticated(sp: Optional[SessionPrincipal]) -> GuardResult:
    """Allow only a session principal whose is_authenticated marker is True."""
    if sp is None or sp.is_authenticated is not True:
        return UNAUTHORIZED
    return Allow(sp)


def require_role(minimum: Role) -> Guard:
    """Build a guard that requires authentication and a role of at least minimum."""

    def guard(sp: Optional[SessionPrincipal]) -> GuardResult:
        result = require_authenticated(sp)
        if isinstance(result, Denial):
            return result
        if not result.principal.role.at_least(minimum):
            return FORBIDDEN
        return result

    guard.__name__ = f"require_{minimum.value}"
    return guard


require_elevated: Guard = require_role(Role.top())
require_elevated.__name__ = "require_elevated"

# Admin console reads (application review) are open to every administrator.
require_administrator: Guard = require_role(Role.ADMIN)
require_administrator.__name__ = "require_administrator"


class GuardContext(Protocol):
    def read_session_principal(self) -> Optional[SessionPrincipal]: ...

    def attach_principal(self, principal: SessionPrincipal) -> None: ...


def run_guard(guard: Guard, ctx: GuardContext) -> Optional[Denial]:
    """Apply guard to ctx. Attaches the principal and returns None on success."""
    result = guard(ctx.read_session_principal())
    if isinstance(result, Denial):
        return result
    ctx.attach_principal(result.principal)
    return None
