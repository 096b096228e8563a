"""
auth/session.py -- Session cookie issue / read / clear.

Security design decisions:
  Payload: the session is a JSON claims object (see auth.models.Session),
       signed as an HS256 JWS with python-jose under SESSION_SECRET_KEY. The
       claims stay readable JSON, but a tampered cookie (say, isAdmin flipped
       to true) fails signature verification and is treated as invalid.

  Expiry: expires_at = issue time + 3600 s, carried as the "exp" claim and
       checked here (not by jose) so the comparison is exactly
       `expires_at < now` against an injectable clock. There is no sliding
       renewal; an expired session needs a fresh Schoolbox handshake.

  Cookie flags: httponly, secure, samesite="none", path="/", max_age=3600.
       The portal runs inside a cross-site iframe -- SameSite=None is the only
       value browsers will send there, and it requires Secure.

  Reads never raise. A missing cookie is None; an expired or unreadable
       cookie is None *and* deleted on the outgoing response so the stale
       value does not linger.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from typing import Any, Optional

from jose import JWTError, jwt

from auth.models import SESSION_ROLE, Session
from core.config import get_settings

logger = logging.getLogger("training.auth.session")

SESSION_COOKIE_NAME = "sbx_training_session"
SESSION_DURATION_SECONDS = 3600

_ALGORITHM = "HS256"


class SessionError(Exception):
    """Base class for unusable session cookies."""


class SessionExpired(SessionError):
    """The session's expires_at is in the past."""


class SessionInvalid(SessionError):
    """The cookie is malformed, tampered with, or missing required claims."""


def _now() -> int:
    return int(time.time())


def session_to_claims(session: Session) -> dict[str, Any]:
    claims = dataclasses.asdict(session)
    claims["exp"] = claims.pop("expires_at")
    return claims


def session_from_claims(claims: dict[str, Any]) -> Session:
    """Build a Session from decoded claims.

    Raises SessionInvalid if a required claim is missing or mistyped.
    """
    try:
        return Session(
            user_id=str(claims["user_id"]),
            remote_user_id=int(claims["remote_user_id"]),
            external_id=str(claims["external_id"]),
            username=str(claims["username"]),
            email=str(claims["email"]),
            name=str(claims["name"]),
            role=str(claims["role"]),
            is_admin=claims.get("is_admin") is True,
            is_hr=claims.get("is_hr") is True,
            expires_at=int(claims["exp"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise SessionInvalid(f"session claims malformed: {e}") from e


class SessionManager:
    """Issues and validates the sbx_training_session cookie.

    Usage:
        manager = SessionManager.from_settings()
        value = manager.issue(Session(user_id=..., ...))
        manager.set_cookie(response, value)
        session = manager.read(request, response)   # None if absent/expired/invalid
        manager.clear(response)
    """

    def __init__(
        self,
        secret_key: str,
        duration: int = SESSION_DURATION_SECONDS,
        cookie_name: str = SESSION_COOKIE_NAME,
    ) -> None:
        if not secret_key:
            raise ValueError("SessionManager requires a non-empty secret key")
        self._secret_key = secret_key
        self.duration = duration
        self.cookie_name = cookie_name

    @classmethod
    def from_settings(cls) -> SessionManager:
        cfg = get_settings()
        return cls(secret_key=cfg.session_secret_key, duration=cfg.session_duration_seconds)

    # ------------------------------------------------------------------
    # Encode / decode
    # ------------------------------------------------------------------

    def issue(self, session: Session, now: Optional[int] = None) -> str:
        """Return a signed cookie value for the given claims.

        Any expires_at on the input is ignored; it is always now + duration.
        """
        issued = _now() if now is None else now
        claims = session_to_claims(dataclasses.replace(session, expires_at=issued + self.duration))
        return jwt.encode(claims, self._secret_key, algorithm=_ALGORITHM)

    def decode(self, value: str, now: Optional[int] = None) -> Session:
        """Verify and decode a cookie value.

        Raises SessionInvalid for a bad signature or malformed claims,
        SessionExpired once expires_at has passed.
        """
        try:
            claims = jwt.decode(
                value,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as e:
            raise SessionInvalid(f"session signature check failed: {e}") from e

        session = session_from_claims(claims)
        current = _now() if now is None else now
        if session.expires_at < current:
            raise SessionExpired(f"session expired at {session.expires_at}")
        return session

    # ------------------------------------------------------------------
    # Cookie helpers
    # ------------------------------------------------------------------

    def set_cookie(self, response, value: str) -> None:
        """Write the session cookie with iframe-compatible flags."""
        response.set_cookie(
            self.cookie_name,
            value=value,
            max_age=self.duration,
            path="/",
            secure=True,
            httponly=True,
            samesite="none",
        )

    def clear(self, response) -> None:
        """Delete the session cookie (logout, expiry, or invalid value)."""
        response.delete_cookie(
            self.cookie_name,
            path="/",
            secure=True,
            httponly=True,
            samesite="none",
        )

    def read(self, request, response, now: Optional[int] = None) -> Optional[Session]:
        """Return the request's session, or None.

        Expired and invalid cookies are cleared on `response` as a side
        effect. The role marker is part of validity: a session without the
        staff role is treated as invalid here (the gate reports it separately
        as forbidden).
        """
        value = request.cookies.get(self.cookie_name)
        if not value:
            return None
        try:
            session = self.decode(value, now=now)
        except SessionExpired:
            logger.info("Session expired; clearing cookie")
            self.clear(response)
            return None
        except SessionInvalid as e:
            logger.info("Invalid session cookie; clearing (%s)", e)
            self.clear(response)
            return None
        if session.role != SESSION_ROLE:
            self.clear(response)
            return None
        return session
