"""
auth/errors.py -- Exception taxonomy for the auth package.

InvalidCredentials and AccountDeactivated share the AuthenticationFailed base
so authenticate() can collapse both into one outcome for its caller. Only logs
see the difference.

StorageFailure wraps collaborator errors (SQLAlchemy) on the read path so the
route layer can report an internal error without importing sqlalchemy.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all auth package errors."""


class AuthenticationFailed(AuthError):
    """Login rejected. Callers must not distinguish the subclasses."""


class InvalidCredentials(AuthenticationFailed):
    """Unknown username or wrong password."""


class AccountDeactivated(AuthenticationFailed):
    """The principal exists but is_active is False."""


class Unauthenticated(AuthError):
    """No valid session principal on the request."""

    status_code = 401
    message = "authentication required"


class InsufficientRole(AuthError):
    """Authenticated, but the role is below the required tier."""

    status_code = 403
    message = "elevated privileges required"


class StorageFailure(AuthError):
    """The storage collaborator failed. Not caused by the user."""
