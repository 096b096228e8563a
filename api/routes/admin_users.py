"""
api/routes/admin_users.py -- Local user administration and Schoolbox staff sync.

Routes:
  GET  /api/admin/users                   -- list local users (admin)
  PUT  /api/admin/users/{user_id}/roles   -- replace a user's roles (admin)
  GET  /api/admin/users/sync              -- preview the Schoolbox staff roster (admin)
  POST /api/admin/users/sync              -- create/rename local users from the roster (admin)

Security:
  Router-level require_admin: every handler needs the session's is_admin flag.
  [R1] Only a caller whose *current* local row holds super_admin may grant
       super_admin. The session flag alone is not enough -- it was frozen at
       login and admin-by-allowlist never implies super_admin.
  Sync aborts on the first failed roster page; a partial roster is never
  treated as complete.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import RolesUpdate, StaffPreview, SyncPreviewResponse, SyncStatsResponse, UserResponse
from auth.dependencies import get_directory, get_user_store, require_admin
from auth.models import LocalUser, Session
from auth.reconcile import sync_roster
from core.config import get_settings
from core.directory import DirectoryError

logger = logging.getLogger("training.api.admin")

_PREVIEW_LIMIT = 50

# Auth policy:
# - all routes: require admin (router-level dependency)
router = APIRouter(dependencies=[Depends(require_admin)])


def _to_response(user: LocalUser) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        roles=user.roles,
        active=user.active,
        avatar_initials=user.avatar_initials,
        created_at=user.created_at,
    )


def _require_directory_configured() -> None:
    if not get_settings().schoolbox_configured:
        logger.error("Staff sync requested but SCHOOLBOX_BASE_URL / SCHOOLBOX_API_TOKEN are not configured")
        raise HTTPException(
            status_code=500,
            detail={
                "code": "directory_not_configured",
                "message": "Schoolbox API not configured. Set SCHOOLBOX_BASE_URL and SCHOOLBOX_API_TOKEN.",
            },
        )


def _directory_failure(exc: DirectoryError) -> HTTPException:
    return HTTPException(
        status_code=500,
        detail={"code": "directory_error", "message": "Could not fetch staff from Schoolbox.", "detail": str(exc)},
    )


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get("/admin/users", response_model=list[UserResponse])
def list_users(request: Request) -> list[UserResponse]:
    """Return every local user ordered by name."""
    return [_to_response(u) for u in get_user_store(request).list_users()]


@router.put("/admin/users/{user_id}/roles", response_model=UserResponse)
def update_roles(
    request: Request,
    user_id: str,
    body: RolesUpdate,
    session: Session = Depends(require_admin),
) -> UserResponse:
    """Replace a user's roles. Takes effect at that user's next login."""
    store = get_user_store(request)
    roles = [r.value for r in body.roles]

    if "super_admin" in roles:
        caller = store.get_by_id(session.user_id)
        if caller is None or "super_admin" not in caller.roles:  # [R1]
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Only super admins can assign the super_admin role."},
            )

    if not store.set_roles(user_id, roles):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})
    logger.info("User %s roles set to %s by %s", user_id, roles, session.username)
    return _to_response(store.get_by_id(user_id))


# ---------------------------------------------------------------------------
# Staff sync
# ---------------------------------------------------------------------------


@router.get("/admin/users/sync", response_model=SyncPreviewResponse)
def preview_sync(request: Request) -> SyncPreviewResponse:
    """Fetch the staff roster without touching the local user table."""
    _require_directory_configured()
    try:
        staff = get_directory(request).fetch_all_staff()
    except DirectoryError as e:
        logger.exception("Staff sync preview failed")
        raise _directory_failure(e) from e
    return SyncPreviewResponse(
        total_staff=len(staff),
        staff=[
            StaffPreview(name=s.full_name, email=s.email, username=s.username, external_id=s.external_id)
            for s in staff[:_PREVIEW_LIMIT]
        ],
        has_more=len(staff) > _PREVIEW_LIMIT,
    )


@router.post("/admin/users/sync", response_model=SyncStatsResponse)
def run_sync(request: Request, session: Session = Depends(require_admin)) -> SyncStatsResponse:
    """Create missing staff and rename changed ones. Never deletes."""
    _require_directory_configured()
    logger.info("Staff sync started by %s", session.username)
    try:
        staff = get_directory(request).fetch_all_staff()
    except DirectoryError as e:
        logger.exception("Staff sync failed while fetching roster")
        raise _directory_failure(e) from e
    stats = sync_roster(get_user_store(request), staff)
    return SyncStatsResponse(total=stats.total, created=stats.created, updated=stats.updated, skipped=stats.skipped)
