"""
auth/session.py -- Reading and writing the Session Principal.

The session itself is an opaque key-value mapping owned by the session store
(Starlette's SessionMiddleware in this app). This module only knows the one
key it owns and the shape stored under it.

read_session_principal() is deliberately forgiving: a missing key, a value of
the wrong type, an unknown role or a non-bool marker all read as "no
principal". A partially populated session object must never grant access.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from typing import Any, Optional

from auth.models import Principal, Role, SessionPrincipal

SESSION_KEY = "principal"


def session_principal_for(principal: Principal) -> SessionPrincipal:
    """Project a freshly authenticated Principal into its session form."""
    if principal.id is None:
        raise ValueError("Cannot create a session for an unsaved principal")
    return SessionPrincipal(
        id=principal.id,
        username=principal.username,
        role=principal.role,
        is_authenticated=True,
    )


def write_session_principal(session: MutableMapping[str, Any], sp: SessionPrincipal) -> None:
    # Only JSON-safe primitives: the cookie session serializes with json.
    session[SESSION_KEY] = {
        "id": sp.id,
        "username": sp.username,
        "role": sp.role.value,
        "is_authenticated": sp.is_authenticated,
    }


def read_session_principal(session: Mapping[str, Any]) -> Optional[SessionPrincipal]:
    raw = session.get(SESSION_KEY)
    if not isinstance(raw, Mapping):
        return None
    user_id = raw.get("id")
    username = raw.get("username")
    role = Role.parse(raw.get("role"))
    marker = raw.get("is_authenticated")
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        return None
    if not isinstance(username, str) or role is None:
        return None
    return SessionPrincipal(
        id=user_id,
        username=username,
        role=role,
        is_authenticated=marker is True,
    )


def clear_session_principal(session: MutableMapping[str, Any]) -> None:
    session.pop(SESSION_KEY, None)
