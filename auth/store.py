"""
auth/store.py -- SQLAlchemy Core persistence layer for principals and applications.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_principal / _row_to_application are the
mappers. Route and auth code never touches SQL directly.

This is the storage collaborator the auth core consumes. The core itself only
relies on get_by_username(), update_user() and create_administrator(); the
rest serves the routes.

Security:
  All queries use bound parameters. No f-strings in SQL.
  update_user() accepts only whitelisted column names.

Principals are never deleted. Deactivation is is_active=0.

DB path: auth/memberportal.db by default (see core.config.Settings.database_url).

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import Application, ApplicationStatus, Principal, Role

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("email", String(255), nullable=False, server_default=""),
    Column("full_name", String(255), nullable=False, server_default=""),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_approved", Integer, nullable=False, server_default="0"),
    Column("plan_name", String(100)),
    Column("last_login", String(32)),  # ISO 8601, NULL until first login
    Column("created_at", String(32), nullable=False),
)

_applications = Table(
    "applications",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("plan_name", String(100), nullable=False),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("admin_notes", Text),
    Column("reviewed_by", Integer),
    Column("reviewed_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_UPDATABLE_USER_FIELDS = frozenset(
    {"hashed_password", "email", "full_name", "role", "is_active", "is_approved", "plan_name", "last_login"}
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind the login timestamp write."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for Principal and Application records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        store.create_user(Principal(username="ana", hashed_password=hash_password("secret")))
        principal = store.get_by_username("ana")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Principals
    # ------------------------------------------------------------------

    def create_user(self, principal: Principal) -> int:
        """Insert a principal and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=principal.username,
                    hashed_password=principal.hashed_password,
                    email=principal.email,
                    full_name=principal.full_name,
                    role=principal.role.value,
                    is_active=1 if principal.is_active else 0,
                    is_approved=1 if principal.is_approved else 0,
                    plan_name=principal.plan_name,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def create_administrator(self, principal: Principal) -> Principal:
        """Insert an administrator record and return it as stored.

        The caller decides the role; provision_initial_administrator() forces
        super_admin before it gets here.
        """
        user_id = self.create_user(principal)
        created = self.get_by_id(user_id)
        if created is None:
            raise RuntimeError(f"Administrator {user_id} missing after insert")
        return created

    def get_by_username(self, username: str) -> Optional[Principal]:
        """Look up a principal by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def get_by_id(self, user_id: int) -> Optional[Principal]:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def list_users(self) -> list[Principal]:
        """Return all principals ordered by username."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_principal(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing principal.

        Accepted fields: see _UPDATABLE_USER_FIELDS. Unknown names raise
        ValueError. Role values are stored by their string value; booleans are
        stored as 0/1.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _UPDATABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if not fields:
            return False
        values = dict(fields)
        if "role" in values:
            values["role"] = Role(values["role"]).value
        for flag in ("is_active", "is_approved"):
            if flag in values:
                values[flag] = 1 if values[flag] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def has_super_admin(self) -> bool:
        """Return True if any super_admin record exists (active or not).

        Used by the first-run setup redirect and POST /setup.
        """
        with self.engine.connect() as conn:
            found = conn.execute(
                select(_users.c.id).where(_users.c.role == Role.SUPER_ADMIN.value).limit(1)
            ).fetchone()
        return found is not None

    def count_active_super_admins(self) -> int:
        """Used by PATCH /admin/users/{id} to protect the last super-administrator [M4]."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == Role.SUPER_ADMIN.value) & (_users.c.is_active == 1))
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def create_application(self, application: Application) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _applications.insert().values(
                    user_id=application.user_id,
                    plan_name=application.plan_name,
                    status=application.status.value,
                    admin_notes=application.admin_notes,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_application(self, application_id: int) -> Optional[Application]:
        with self.engine.connect() as conn:
            row = conn.execute(_applications.select().where(_applications.c.id == application_id)).fetchone()
        return _row_to_application(row) if row is not None else None

    def get_application_for_user(self, user_id: int) -> Optional[Application]:
        """Return the user's most recent application, or None if they never applied."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _applications.select()
                .where(_applications.c.user_id == user_id)
                .order_by(_applications.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_application(row) if row is not None else None

    def list_applications(self, status: Optional[ApplicationStatus] = None) -> list[Application]:
        """Return applications oldest first, optionally filtered by status."""
        query = _applications.select().order_by(_applications.c.id)
        if status is not None:
            query = query.where(_applications.c.status == status.value)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_application(r) for r in rows]

    def review_application(
        self,
        application_id: int,
        status: ApplicationStatus,
        reviewed_by: int,
        admin_notes: Optional[str] = None,
    ) -> Optional[Application]:
        """Record a review decision. Returns the updated application, or None if not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _applications.update()
                .where(_applications.c.id == application_id)
                .values(
                    status=status.value,
                    admin_notes=admin_notes,
                    reviewed_by=reviewed_by,
                    reviewed_at=_now_iso(),
                )
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_application(application_id)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_principal(row) -> Principal:
    # A role string written by an older deployment ("member") reads as a plain user.
    role = Role.parse(row.role) or Role.USER
    return Principal(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        email=row.email,
        full_name=row.full_name,
        role=role,
        is_active=bool(row.is_active),
        is_approved=bool(row.is_approved),
        plan_name=row.plan_name,
        last_login=row.last_login,
        created_at=row.created_at,
    )


def _row_to_application(row) -> Application:
    return Application(
        id=row.id,
        user_id=row.user_id,
        plan_name=row.plan_name,
        status=ApplicationStatus(row.status),
        admin_notes=row.admin_notes,
        reviewed_by=row.reviewed_by,
        reviewed_at=row.reviewed_at,
        created_at=row.created_at,
    )
