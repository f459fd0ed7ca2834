"""
auth/identity.py -- Identity resolution: password login and administrator bootstrap.

authenticate() is pure orchestration over the password codec and the storage
collaborator. It returns the Principal on success and None on every kind of
failure, so the caller cannot tell "no such user" from "wrong password" from
"account disabled" [C1]. The distinction is logged, not returned.

Timing: every failure path runs exactly one password verification. Unknown
usernames verify against DUMMY_HASH; deactivated accounts are verified before
they are rejected. Response time therefore does not reveal account existence
or state.

Storage errors while reading the principal propagate as StorageFailure. The
post-login write (last_login, plus a hash upgrade for legacy bcrypt values)
is best effort: a failure is logged and the login still succeeds.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import AccountDeactivated, AuthenticationFailed, InvalidCredentials, StorageFailure
from auth.models import Principal, Role
from auth.passwords import DUMMY_HASH, hash_password_async, needs_rehash, verify_password_async

logger = logging.getLogger("memberportal.auth")


class PrincipalStore(Protocol):
    """The slice of the storage collaborator this module depends on."""

    def get_by_username(self, username: str) -> Optional[Principal]: ...

    def update_user(self, user_id: int, **fields) -> bool: ...

    def create_administrator(self, principal: Principal) -> Principal: ...


async def authenticate(store: PrincipalStore, username: str, password: str) -> Optional[Principal]:
    """Verify a username/password pair. Returns the Principal or None.

    Raises:
        StorageFailure: the principal lookup itself failed.
    """
    try:
        principal = await _check_credentials(store, username, password)
    except AuthenticationFailed as exc:
        logger.info("Login rejected for %r: %s", username, type(exc).__name__)
        return None

    await _record_login(store, principal, password)
    return principal


async def _check_credentials(store: PrincipalStore, username: str, password: str) -> Principal:
    try:
        principal = store.get_by_username(username)
    except SQLAlchemyError as exc:
        raise StorageFailure(f"Principal lookup failed for {username!r}") from exc

    if principal is None:
        # Equalize timing -- do NOT return before running the hash [C1]
        await verify_password_async(password, DUMMY_HASH)
        raise InvalidCredentials(username)

    password_ok = await verify_password_async(password, principal.hashed_password)
    if not principal.is_active:
        raise AccountDeactivated(username)
    if not password_ok:
        raise InvalidCredentials(username)
    return principal


async def _record_login(store: PrincipalStore, principal: Principal, password: str) -> None:
    now = datetime.now(timezone.utc).isoformat()
    fields: dict = {"last_login": now}
    if needs_rehash(principal.hashed_password):
        fields["hashed_password"] = await hash_password_async(password)
    try:
        store.update_user(principal.id, **fields)
    except Exception:
        # Login success is the contract; the timestamp is informational.
        logger.warning("Could not record login for user %s", principal.id, exc_info=True)
        return
    principal.last_login = now
    if "hashed_password" in fields:
        principal.hashed_password = fields["hashed_password"]
        logger.info("Upgraded legacy password hash for user %s", principal.id)


async def provision_initial_administrator(
    store: PrincipalStore,
    *,
    username: str,
    password: str,
    email: str = "",
    full_name: str = "",
    role: object = None,
) -> Principal:
    """Create the bootstrap administrator with super_admin privileges.

    role is accepted for call-site compatibility and ignored: the first
    administrator is always super_admin. This function does not check whether
    an administrator already exists; callers (POST /setup, main.py) do.
    """
    if role is not None and Role.parse(role) is not Role.SUPER_ADMIN:
        logger.info("Ignoring requested role %r for initial administrator %r", role, username)
    principal = Principal(
        username=username,
        hashed_password=await hash_password_async(password),
        email=email,
        full_name=full_name,
        role=Role.SUPER_ADMIN,
    )
    created = store.create_administrator(principal)
    logger.info("Provisioned initial administrator %r (id=%s)", created.username, created.id)
    return created


async def change_password(store: PrincipalStore, principal: Principal, current: str, new: str) -> bool:
    """Replace principal's password after checking the current one.

    Returns False if current does not verify. Storage errors propagate.
    """
    if not await verify_password_async(current, principal.hashed_password):
        return False
    hashed = await hash_password_async(new)
    store.update_user(principal.id, hashed_password=hashed)
    principal.hashed_password = hashed
    return True
