"""
auth/access_gate.py -- Route access gate: identity, role and membership approval.

Every protected page is run through this gate. It combines three inputs:
  1. whether the identity is known (and whether it is still loading),
  2. the route's role requirement,
  3. the membership approval rule: an approved account with a plan, and no
     application still waiting for review.

and picks one GateState. evaluate() is a pure function over a snapshot of the
inputs; navigation is a separate effect applied by AccessGate (client-style,
inputs arrive over time) or by the web layer (server-side, one request).

Approval is never cached. Each evaluation sees the principal and application
exactly as they were loaded for this render.

Either approval condition is enough to gate: an approved profile with a
lingering pending application still lands on the pending-approval page.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from auth.models import ApplicationStatus, Role

LOGIN_PATH = "/login"
PENDING_APPROVAL_PATH = "/pending-approval"

T = TypeVar("T")


class GateState(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    PENDING_APPROVAL = "pending_approval"
    DENIED = "denied"
    AUTHORIZED = "authorized"


class RouteRequirement(str, Enum):
    NONE = "none"
    ADMIN = "admin"


@dataclass(frozen=True)
class Query(Generic[T]):
    """Snapshot of one data lookup: its data (None if absent) and loading flag."""

    data: Optional[T] = None
    is_loading: bool = False


@dataclass(frozen=True)
class GateInputs:
    identity: Query
    application: Query = field(default_factory=Query)
    requirement: RouteRequirement = RouteRequirement.NONE
    path: str = "/"


@dataclass(frozen=True)
class GateDecision:
    state: GateState
    redirect_to: Optional[str] = None


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def is_fully_approved(principal: Any) -> bool:
    """True iff is_approved is exactly True and plan_name is a non-empty string."""
    if principal is None:
        return False
    plan_name = _field(principal, "plan_name")
    return _field(principal, "is_approved") is True and isinstance(plan_name, str) and plan_name != ""


def _has_pending_application(application: Any) -> bool:
    if application is None:
        return False
    status = _field(application, "status")
    return status == ApplicationStatus.PENDING or status == ApplicationStatus.PENDING.value


def _on_pending_path(path: str) -> bool:
    return path.startswith(PENDING_APPROVAL_PATH)


def _pending() -> GateDecision:
    return GateDecision(GateState.PENDING_APPROVAL, redirect_to=PENDING_APPROVAL_PATH)


def evaluate(inputs: GateInputs) -> GateDecision:
    """Decide the gate state for one snapshot of inputs. Never raises.

    redirect_to is set only when a navigation is wanted: UNAUTHENTICATED, and
    PENDING_APPROVAL when the current path is not already the pending page.
    """
    needs_admin = inputs.requirement is RouteRequirement.ADMIN

    # Admin-only routes never wait on the application lookup.
    if inputs.identity.is_loading or (not needs_admin and inputs.application.is_loading):
        return GateDecision(GateState.LOADING)

    principal = inputs.identity.data
    if principal is None:
        return GateDecision(GateState.UNAUTHENTICATED, redirect_to=LOGIN_PATH)

    if needs_admin:
        if Role.parse(_field(principal, "role")) is not Role.top():
            return GateDecision(GateState.DENIED)
        return GateDecision(GateState.AUTHORIZED)

    if not is_fully_approved(principal) or _has_pending_application(inputs.application.data):
        if _on_pending_path(inputs.path):
            return GateDecision(GateState.PENDING_APPROVAL)
        return _pending()

    return GateDecision(GateState.AUTHORIZED)


class AccessGate:
    """Stateful driver for evaluate() when inputs change over time.

    - Keeps the last loaded data for each query. A refetch that reports
      is_loading after a completed load is treated as loaded with the last
      result, so a periodic refresh does not flicker through LOADING.
    - Ties the application query to the identity id it was loaded for. A
      different principal restarts the lookup instead of reusing the result.
    - Calls navigate(path) at most once per transition, and never for a path
      the gate is already on.
    """

    def __init__(self, navigate: Callable[[str], None], requirement: RouteRequirement = RouteRequirement.NONE) -> None:
        self._navigate = navigate
        self._requirement = requirement
        self._identity: Query = Query(is_loading=True)
        self._application: Query = Query(is_loading=requirement is RouteRequirement.NONE)
        self._application_enabled = True
        # id of the identity the application query belongs to
        self._owner: Any = None
        self._path = "/"
        self._last: Optional[GateDecision] = None
        self._last_redirect: Optional[tuple[GateState, str]] = None

    @property
    def decision(self) -> Optional[GateDecision]:
        return self._last

    def update(
        self,
        *,
        identity: Optional[Query] = None,
        application: Optional[Query] = None,
        path: Optional[str] = None,
    ) -> GateDecision:
        """Merge whichever inputs changed, re-evaluate, and apply the redirect effect."""
        if identity is not None:
            self._identity = _merge(self._identity, identity)
        signed_out = not self._identity.is_loading and self._identity.data is None
        owner = None if self._identity.data is None else _field(self._identity.data, "id")
        if signed_out:
            # The application lookup is disabled, not pending.
            self._application = Query()
            self._application_enabled = False
            self._owner = None
        elif not self._application_enabled or (
            owner is not None and self._owner is not None and owner != self._owner
        ):
            # Signed back in, or a different principal: the lookup starts over.
            self._application = Query(is_loading=self._requirement is RouteRequirement.NONE)
            self._application_enabled = True
        if owner is not None:
            self._owner = owner
        if application is not None and not signed_out:
            self._application = _merge(self._application, application)
        if path is not None:
            self._path = path

        decision = evaluate(
            GateInputs(
                identity=self._identity,
                application=self._application,
                requirement=self._requirement,
                path=self._path,
            )
        )
        self._apply(decision)
        self._last = decision
        return decision

    def _apply(self, decision: GateDecision) -> None:
        target = decision.redirect_to
        if target is None:
            self._last_redirect = None
            return
        if self._path == target or self._last_redirect == (decision.state, target):
            return
        self._last_redirect = (decision.state, target)
        self._navigate(target)


def _merge(previous: Query, incoming: Query) -> Query:
    # A refetch in flight keeps showing what was loaded before.
    if incoming.is_loading and not previous.is_loading:
        return previous
    return incoming
