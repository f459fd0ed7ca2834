"""
API request and response models for MemberPortal REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Error and message responses carry the {"success": ..., "message": ...} envelope
the portal clients parse.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Application, Principal, Role


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ReviewDecisionEnum(str, Enum):
    approved = "approved"
    rejected = "rejected"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=False)

    # No length policy here beyond an upper bound; registration owns password rules.
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(max_length=255)


class PasswordChange(BaseModel):
    current_password: str = Field(max_length=255)
    new_password: str = Field(min_length=1, max_length=255)


class ApplicationReview(BaseModel):
    """Request body for PATCH /api/v1/admin/applications/{id}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    status: ReviewDecisionEnum
    admin_notes: Optional[str] = Field(default=None, max_length=2000)


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/admin/users/{id}. Omitted fields are left unchanged."""

    role: Optional[Role] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    full_name: str
    email: str
    role: Role
    is_approved: bool
    plan_name: Optional[str]

    @classmethod
    def from_principal(cls, principal: Principal) -> "UserInfo":
        return cls(
            id=principal.id,
            username=principal.username,
            full_name=principal.full_name,
            email=principal.email,
            role=principal.role,
            is_approved=principal.is_approved,
            plan_name=principal.plan_name,
        )


class UserResponse(UserInfo):
    is_active: bool
    last_login: Optional[str]
    created_at: str

    @classmethod
    def from_principal(cls, principal: Principal) -> "UserResponse":
        return cls(
            **UserInfo.from_principal(principal).model_dump(),
            is_active=principal.is_active,
            last_login=principal.last_login,
            created_at=principal.created_at or "",
        )


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str = "logged in"
    user: UserInfo


class SessionUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: Role


class AuthCheckResponse(BaseModel):
    """Response for GET /api/v1/auth/check. Never 401s; reports the session state."""

    model_config = ConfigDict(frozen=True)

    is_authenticated: bool
    user: Optional[SessionUser] = None


class ApplicationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    plan_name: str
    status: str
    admin_notes: Optional[str]
    reviewed_by: Optional[int]
    reviewed_at: Optional[str]
    created_at: str

    @classmethod
    def from_application(cls, application: Application) -> "ApplicationResponse":
        return cls(
            id=application.id,
            user_id=application.user_id,
            plan_name=application.plan_name,
            status=application.status.value,
            admin_notes=application.admin_notes,
            reviewed_by=application.reviewed_by,
            reviewed_at=application.reviewed_at,
            created_at=application.created_at or "",
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
