"""
core/models.py -- Domain dataclasses for identities owned by Schoolbox.

Pure data containers with zero logic. Mapping from raw API payloads lives in
core/directory.py; matching against local users lives in auth/reconcile.py.
"""

from dataclasses import dataclass, field
from typing import Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# The only Schoolbox role.type allowed into the portal.
STAFF_ROLE_TYPE = "staff"


@dataclass
class RemoteUserProfile:
    """A user record as returned by the Schoolbox directory API.

    internal_id is Schoolbox's own numeric key (GET /api/user/{id}).
    external_id is the college's staff ID; it may be missing for guests.
    full_name is always populated -- the mapper falls back to "first last"
    when the API omits it.

    Read-only from this system's perspective.
    """

    internal_id: int
    username: str
    external_id: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    email: Optional[str] = None
    role_type: Optional[str] = None  # "staff" | "student" | "parent" | "guest"
    role_name: Optional[str] = None
    title: Optional[str] = None


@dataclass
class DirectoryPage:
    """One page of a cursor-paginated /api/user listing.

    next_cursor is None on the last page.
    """

    items: list[RemoteUserProfile] = field(default_factory=list)
    next_cursor: Optional[str] = None
