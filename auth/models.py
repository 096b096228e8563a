"""
auth/models.py -- Domain dataclasses for local identities and sessions.

Pattern: Data class (pure data container, zero logic). Stores, the reconciler
and the session manager do the work.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# Roles a local user may hold. "staff" is granted on first login; the rest are
# assigned by an admin.
VALID_ROLES = ("staff", "hr", "admin", "super_admin")

# The portal is staff-only; every issued session carries this role marker.
SESSION_ROLE = "staff"


@dataclass
class LocalUser:
    """A portal user row, shared with the wider training database.

    email is the match key for Schoolbox logins. Matching is
    case-insensitive; the store keeps a lower-cased copy under a UNIQUE
    constraint so two rows can never differ only by case.

    id is None before the record is written to the database.
    """

    name: str
    email: str
    roles: list[str] = field(default_factory=lambda: ["staff"])
    active: bool = True
    avatar_initials: str = ""
    id: str | None = None  # UUID4 string, set by the store on insert
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class AccessFlags:
    """Authorization flags derived at login and frozen into the session."""

    is_admin: bool = False
    is_hr: bool = False


@dataclass
class Session:
    """Claims carried in the session cookie. Not stored server-side.

    expires_at is always issue time + the fixed session duration. There is
    no renewal: an expired session means a fresh handshake from Schoolbox.
    """

    user_id: str
    remote_user_id: int
    external_id: str
    username: str
    email: str
    name: str
    role: str = SESSION_ROLE
    is_admin: bool = False
    is_hr: bool = False
    expires_at: int = 0
