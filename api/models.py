"""
API request and response models for the training portal REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
core/models.py, which own the internal domain representation. Route handlers
map between the two.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    """Wire form of auth.models.VALID_ROLES; the two must list the same roles."""

    staff = "staff"
    hr = "hr"
    admin = "admin"
    super_admin = "super_admin"


# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class SessionInfo(BaseModel):
    """The subset of session claims exposed to the browser."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    name: str
    email: str
    is_admin: bool
    is_hr: bool
    expires_at: int


class SessionResponse(BaseModel):
    """Response for GET /api/session. session is null when not signed in."""

    model_config = ConfigDict(frozen=True)

    session: Optional[SessionInfo] = None


# ---------------------------------------------------------------------------
# Admin -- users
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """A local user as shown on the admin users screen."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    roles: list[str]
    active: bool
    avatar_initials: str
    created_at: Optional[str] = None


class RolesUpdate(BaseModel):
    """Request body for PUT /api/admin/users/{user_id}/roles.

    Duplicates are dropped, first occurrence wins. At least one role is
    required -- a user with no roles could not be told apart from a
    half-provisioned row.
    """

    roles: list[RoleEnum] = Field(min_length=1, max_length=len(RoleEnum))

    @field_validator("roles", mode="before")
    @classmethod
    def dedupe_roles(cls, values: list) -> list:
        if not isinstance(values, list):
            return values
        seen: set = set()
        result: list = []
        for v in values:
            if v not in seen:
                seen.add(v)
                result.append(v)
        return result


# ---------------------------------------------------------------------------
# Admin -- staff sync
# ---------------------------------------------------------------------------


class StaffPreview(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    email: Optional[str] = None
    username: str
    external_id: Optional[str] = None


class SyncPreviewResponse(BaseModel):
    """Response for GET /api/admin/users/sync (no changes made)."""

    model_config = ConfigDict(frozen=True)

    preview: bool = True
    total_staff: int
    staff: list[StaffPreview]
    has_more: bool


class SyncStatsResponse(BaseModel):
    """Response for POST /api/admin/users/sync."""

    model_config = ConfigDict(frozen=True)

    total: int
    created: int
    updated: int
    skipped: int
