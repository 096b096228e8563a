"""
auth/gate.py -- Per-request access decision for every portal path.

evaluate() is a pure function of (path, query params, cookie value, clock);
the HTTP middleware in api/main.py turns its GateDecision into either
call_next() or a 302. Checks run in a fixed order and the first that fires
decides:

  1. Handshake params (key, time, id, user all present)
         -> redirect to /api/verify with those params, even over a valid
            session, so a fresh SSO link always re-authenticates.
  2. Public path (/, /login, /unauthorized)   -> proceed
  3. No session cookie                        -> /unauthorized
  4. Expired                                  -> /unauthorized?error=expired
     Unreadable / tampered                    -> /unauthorized?error=invalid
  5. Role is not the staff marker             -> /unauthorized?error=forbidden
  6. /admin subtree without is_admin          -> /dashboard?error=forbidden
  7. Otherwise                                -> proceed

Step 6 sends an authenticated user to the dashboard rather than the Access
Denied page: "logged in, not allowed here" is not "not logged in".

Excluded paths (static assets, the verify endpoint itself, favicon, health)
never reach evaluate().

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

from auth.handshake import Handshake
from auth.models import SESSION_ROLE
from auth.session import SessionExpired, SessionInvalid, SessionManager

logger = logging.getLogger("training.gate")

VERIFY_PATH = "/api/verify"
UNAUTHORIZED_PATH = "/unauthorized"
DASHBOARD_PATH = "/dashboard"
ADMIN_PREFIX = "/admin"

PUBLIC_PATHS = frozenset({"/", "/login", UNAUTHORIZED_PATH})
EXCLUDED_PATHS = frozenset({VERIFY_PATH, "/favicon.ico", "/api/health"})
EXCLUDED_PREFIXES = ("/static/",)


class GateOutcome(str, enum.Enum):
    PROCEED = "proceed"
    VERIFY = "verify"
    UNAUTHORIZED = "unauthorized"
    DASHBOARD = "dashboard"


@dataclass
class GateDecision:
    outcome: GateOutcome
    location: Optional[str] = None  # redirect target; None when proceeding
    clear_cookie: bool = False  # delete the session cookie on the redirect


_PROCEED = GateDecision(GateOutcome.PROCEED)


def is_excluded(path: str) -> bool:
    """Return True for paths the gate never inspects."""
    return path in EXCLUDED_PATHS or path.startswith(EXCLUDED_PREFIXES)


def is_admin_path(path: str) -> bool:
    # "/administrators" is not under the admin subtree.
    return path == ADMIN_PREFIX or path.startswith(ADMIN_PREFIX + "/")


def _unauthorized(reason: Optional[str] = None, clear_cookie: bool = False) -> GateDecision:
    location = f"{UNAUTHORIZED_PATH}?error={reason}" if reason else UNAUTHORIZED_PATH
    return GateDecision(GateOutcome.UNAUTHORIZED, location, clear_cookie)


def evaluate(
    path: str,
    query_params: Mapping[str, str],
    cookie_value: Optional[str],
    manager: SessionManager,
    now: Optional[int] = None,
) -> GateDecision:
    """Decide what happens to one request. Never raises."""
    handshake = Handshake.from_params(query_params)
    if handshake is not None:
        logger.info("Detected Schoolbox handshake on %s, redirecting to %s", path, VERIFY_PATH)
        return GateDecision(GateOutcome.VERIFY, f"{VERIFY_PATH}?{handshake.to_query()}")

    if path in PUBLIC_PATHS:
        return _PROCEED

    if not cookie_value:
        logger.info("No session cookie on %s", path)
        return _unauthorized()

    try:
        session = manager.decode(cookie_value, now=now)
    except SessionExpired:
        logger.info("Session expired on %s", path)
        return _unauthorized("expired", clear_cookie=True)
    except SessionInvalid as e:
        logger.warning("Unreadable session cookie on %s: %s", path, e)
        return _unauthorized("invalid", clear_cookie=True)
    except Exception:
        logger.exception("Session decode failed unexpectedly on %s", path)
        return _unauthorized("invalid", clear_cookie=True)

    if session.role != SESSION_ROLE:
        logger.info("Non-staff session on %s", path)
        return _unauthorized("forbidden")

    if is_admin_path(path) and not session.is_admin:
        logger.info("Non-admin %s denied %s", session.username, path)
        return GateDecision(GateOutcome.DASHBOARD, f"{DASHBOARD_PATH}?error=forbidden")

    return _PROCEED
