"""
auth/dependencies.py -- FastAPI Depends() helpers for sessions and shared services.

The edge gate (api/main.py) has already turned away requests without a
usable session before any handler runs. These helpers give handlers the
decoded Session and enforce per-endpoint privileges for JSON APIs, where a
redirect would be the wrong answer:

  try_get_session()      -- soft variant, returns None.
  get_current_session()  -- raises HTTP 401 when there is no session.
  require_admin()        -- raises HTTP 403 when the session lacks is_admin.

Services built at startup live on app.state; get_user_store(),
get_directory() and get_session_manager() hand them to handlers.

Layer rule: may import fastapi (this module is part of the DI system) and
core/. No imports from api/ or web/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, Response

from auth.models import Session
from auth.session import SessionManager
from auth.store import UserStore
from core.directory import DirectoryClient


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_user_store(request: Request) -> UserStore:
    return request.app.state.user_store


def get_directory(request: Request) -> DirectoryClient:
    return request.app.state.directory


def try_get_session(request: Request, response: Response) -> Session | None:
    """Return the request's Session, or None. Never raises.

    Expired or invalid cookies are cleared on the response.
    """
    return get_session_manager(request).read(request, response)


def get_current_session(request: Request, response: Response) -> Session:
    """Require a session. Raises HTTP 401 if there is none.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(session: Session = Depends(get_current_session)): ...
    """
    session = try_get_session(request, response)
    if session is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return session


def require_admin(request: Request, response: Response) -> Session:
    """Require the admin flag. Raises HTTP 401 if unauthenticated, 403 if not admin."""
    session = get_current_session(request, response)
    if not session.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return session
