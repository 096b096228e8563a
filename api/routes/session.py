"""
api/routes/session.py -- Current-session endpoints for the browser UI.

Routes:
  GET  /api/session         -- who am I; {"session": null} when signed out
  POST /api/session/logout  -- clear the session cookie

GET never errors: the UI polls it to decide what to render, and a missing or
stale session is an ordinary state, not a failure.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import MessageResponse, SessionInfo, SessionResponse
from auth.dependencies import get_session_manager, try_get_session
from auth.models import Session

# Auth policy:
# - GET  /api/session:        gated by the edge gate; handler tolerates no session
# - POST /api/session/logout: gated by the edge gate; clearing needs no privileges
router = APIRouter()


@router.get("/session", response_model=SessionResponse)
def current_session(session: Session | None = Depends(try_get_session)) -> SessionResponse:
    if session is None:
        return SessionResponse(session=None)
    return SessionResponse(
        session=SessionInfo(
            user_id=session.user_id,
            name=session.name,
            email=session.email,
            is_admin=session.is_admin,
            is_hr=session.is_hr,
            expires_at=session.expires_at,
        )
    )


@router.post("/session/logout", response_model=MessageResponse)
def logout(request: Request, response: Response) -> MessageResponse:
    """End the session. Re-entry requires a fresh link from Schoolbox."""
    get_session_manager(request).clear(response)
    return MessageResponse(message="Logged out.")
