"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container). Stores and routes do the work; the
only behaviour here is the Role ordering, which has to live next to the enum
so every elevation check compares ranks instead of role strings.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Role(str, Enum):
    """Closed set of principal roles, totally ordered by privilege."""

    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def at_least(self, minimum: Role) -> bool:
        return self.rank >= minimum.rank

    @classmethod
    def top(cls) -> Role:
        return cls.SUPER_ADMIN

    @classmethod
    def parse(cls, value: object) -> Optional[Role]:
        """Return the Role for a stored value, or None if it is not a known role.

        Unknown strings never map to a privileged tier.
        """
        if isinstance(value, Role):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


_ROLE_RANK: dict[Role, int] = {Role.USER: 0, Role.ADMIN: 1, Role.SUPER_ADMIN: 2}


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class Principal:
    """A stored identity (member or administrator).

    username is unique and case-sensitive. hashed_password is the opaque
    value produced by auth.passwords.hash_password() (or a legacy bcrypt
    hash carried over from the previous platform).

    is_approved and plan_name together form the membership approval state;
    see auth.access_gate.is_fully_approved(). Administrators provisioned
    through the bootstrap path have neither.

    last_login is None until the first successful authentication.
    """

    username: str
    hashed_password: str
    role: Role = Role.USER
    id: Optional[int] = None
    email: str = ""
    full_name: str = ""
    is_active: bool = True
    is_approved: bool = False
    plan_name: Optional[str] = None
    last_login: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class SessionPrincipal:
    """The identity projection kept in the server-side session after login.

    is_authenticated is the only field the guards trust. A SessionPrincipal
    with is_authenticated=False grants nothing.
    """

    id: int
    username: str
    role: Role
    is_authenticated: bool = False


@dataclass
class Application:
    """A membership application.

    A user may have several over time (rejected, then re-applied); the most
    recent one is the one the access gate looks at.
    """

    user_id: int
    plan_name: str
    status: ApplicationStatus = ApplicationStatus.PENDING
    id: Optional[int] = None
    admin_notes: Optional[str] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[str] = None
    created_at: Optional[str] = None
