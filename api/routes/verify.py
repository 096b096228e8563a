"""
api/routes/verify.py -- Schoolbox Remote Services sign-in endpoint.

Route:
  GET /api/verify?key=&time=&id=&user=

Called by the browser inside the Schoolbox iframe, after the edge gate
bounced a handshake-bearing URL here. Not navigated to by people directly,
so failures answer with the JSON error envelope rather than a page:

  400 missing_parameters     -- any of key/time/id/user absent or empty
  401 invalid_signature      -- bad signature or timestamp outside +/-5 min
  403 not_staff              -- Schoolbox role.type is not "staff"
  500 authentication_failed  -- directory, persistence or unexpected failure (cause logged only)

On success: reconcile the local user, derive flags, set the session cookie,
302 to /dashboard.

Security:
  Rate-limited per client IP (VERIFY_RATE_LIMIT) to slow signature guessing.
  Cache-Control: no-store on every response -- the URL carries a credential.
  Nothing is created or modified unless the signature verified.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse
from auth.dependencies import get_directory, get_session_manager, get_user_store
from auth.gate import DASHBOARD_PATH, VERIFY_PATH
from auth.handshake import Handshake, verify_handshake
from auth.models import Session
from auth.reconcile import derive_flags, reconcile, resolve_email
from auth.store import PersistenceError
from core.config import get_settings
from core.directory import DirectoryError, is_staff

logger = logging.getLogger("training.api.verify")

# Auth policy:
# - GET /api/verify: public -- this IS the sign-in; the signature is the credential.
router = APIRouter()


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(exclude_none=True),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(lambda: get_settings().verify_rate_limit)
@router.get(VERIFY_PATH)
def verify(request: Request):
    """Verify a Schoolbox handshake and start a session."""
    params = request.query_params
    logger.info("Authentication attempt: id=%s user=%s time=%s", params.get("id"), params.get("user"), params.get("time"))

    handshake = Handshake.from_params(params)
    if handshake is None:
        return _error(400, "missing_parameters", "Missing required parameters.")

    cfg = get_settings()
    if not verify_handshake(handshake, tolerance=cfg.handshake_tolerance_seconds):
        return _error(401, "invalid_signature", "Invalid signature or expired timestamp.")

    try:
        profile = get_directory(request).fetch_user_by_handshake(handshake.external_id, handshake.username)

        if not is_staff(profile):
            logger.info("Non-staff user attempted access: %s (role=%s)", profile.username, profile.role_type)
            return _error(403, "not_staff", "Access restricted to staff members.")

        email = resolve_email(profile, cfg.institution_email_domain)
        user = reconcile(get_user_store(request), profile, email_domain=cfg.institution_email_domain)
        flags = derive_flags(
            handshake.username,
            user,
            cfg.admin_allowlist,
            hr_grants_admin=cfg.hr_grants_admin,
        )
    except DirectoryError:
        logger.exception("Directory lookup failed for id=%s user=%s", handshake.external_id, handshake.username)
        return _error(500, "authentication_failed", "Authentication failed.")
    except PersistenceError:
        logger.exception("User reconciliation failed for id=%s", handshake.external_id)
        return _error(500, "authentication_failed", "Authentication failed.")
    except Exception:
        logger.exception("Unexpected sign-in failure for id=%s", handshake.external_id)
        return _error(500, "authentication_failed", "Authentication failed.")

    manager = get_session_manager(request)
    value = manager.issue(
        Session(
            user_id=user.id,
            remote_user_id=profile.internal_id,
            external_id=profile.external_id or handshake.external_id,
            username=handshake.username,
            email=email,
            name=profile.full_name,
            is_admin=flags.is_admin,
            is_hr=flags.is_hr,
        )
    )
    logger.info("Session issued for user %s (admin=%s)", user.id, flags.is_admin)

    resp = RedirectResponse(DASHBOARD_PATH, status_code=302)
    manager.set_cookie(resp, value)
    resp.headers["Cache-Control"] = "no-store"
    return resp
