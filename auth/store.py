"""
auth/store.py -- SQLAlchemy Core persistence layer for local users.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route, reconciler and CLI code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Email uniqueness:
  email keeps the address as Schoolbox sent it (for display); email_normalized
  holds the lower-cased copy under a UNIQUE constraint. Lookups go through
  email_normalized, so "Jane@X.com" and "jane@x.com" are the same user, and
  two concurrent first logins cannot both insert -- the loser gets
  DuplicateEmailError and re-reads.

Errors:
  Every SQLAlchemyError is re-raised as PersistenceError with the driver
  message attached. Nothing is swallowed.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import VALID_ROLES, LocalUser
from core.config import get_settings


class PersistenceError(Exception):
    """A read or write against the user table failed."""


class DuplicateEmailError(PersistenceError):
    """An insert collided with an existing row on the normalized email."""


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),  # UUID4
    Column("name", String(255), nullable=False),
    Column("email", String(320), nullable=False),
    Column("email_normalized", String(320), nullable=False, unique=True),
    Column("roles", Text, nullable=False, server_default='["staff"]'),  # JSON array
    Column("active", Integer, nullable=False, server_default="1"),
    Column("avatar_initials", String(4), nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
)

# Columns update_user() may touch. Anything else is a programming error.
_MUTABLE_FIELDS = frozenset({"name", "avatar_initials", "roles", "active"})


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except IntegrityError as e:
        # Only the email uniqueness constraint is a lost insert race.
        message = str(e.orig).lower()
        if "unique" in message and "email_normalized" in message:
            raise DuplicateEmailError(f"Failed to {action}: {e.orig}") from e
        raise PersistenceError(f"Failed to {action}: {e.orig}") from e
    except SQLAlchemyError as e:
        raise PersistenceError(f"Failed to {action}: {e}") from e


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for LocalUser rows.

    Usage:
        store = UserStore()
        user = store.create_user(LocalUser(name="Jane Smith", email="jane@school.edu"))
        same = store.get_by_email("JANE@school.edu")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_email(self, email: str) -> LocalUser | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with _translate_errors("look up user by email"), self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(_users.c.email_normalized == normalize_email(email))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> LocalUser | None:
        """Look up a user by primary key. Returns None if not found."""
        with _translate_errors("look up user by id"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, limit: int | None = None, offset: int = 0) -> list[LocalUser]:
        """Return users ordered by name, optionally one page at a time."""
        query = _users.select().order_by(_users.c.name, _users.c.id).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        with _translate_errors("list users"), self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_users(self) -> int:
        with _translate_errors("count users"), self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: LocalUser) -> LocalUser:
        """Insert a new user and return it with id and created_at filled in.

        Raises DuplicateEmailError if a row with the same normalized email
        already exists (for example, a concurrent first login won the race).
        """
        user_id = user.id or str(uuid.uuid4())
        created_at = _now_iso()
        with _translate_errors(f"create user {user.email}"), self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    name=user.name,
                    email=user.email,
                    email_normalized=normalize_email(user.email),
                    roles=json.dumps(list(user.roles)),
                    active=1 if user.active else 0,
                    avatar_initials=user.avatar_initials,
                    created_at=created_at,
                )
            )
            conn.commit()
        return LocalUser(
            id=user_id,
            name=user.name,
            email=user.email,
            roles=list(user.roles),
            active=user.active,
            avatar_initials=user.avatar_initials,
            created_at=created_at,
        )

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user and stamp updated_at.

        Accepted fields: name, avatar_initials, roles (list), active (bool).
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "roles" in fields:
            fields["roles"] = json.dumps(list(fields["roles"]))
        if "active" in fields:
            fields["active"] = 1 if fields["active"] else 0
        fields["updated_at"] = _now_iso()
        with _translate_errors(f"update user {user_id}"), self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def set_roles(self, user_id: str, roles: list[str]) -> bool:
        """Replace a user's roles. Raises ValueError for a role outside VALID_ROLES."""
        unknown = set(roles) - set(VALID_ROLES)
        if unknown:
            raise ValueError(f"Unknown roles: {sorted(unknown)!r}")
        return self.update_user(user_id, roles=roles)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> LocalUser:
    try:
        roles = json.loads(row.roles) if row.roles else []
    except ValueError:
        roles = []
    return LocalUser(
        id=row.id,
        name=row.name,
        email=row.email,
        roles=[r for r in roles if isinstance(r, str)],
        active=bool(row.active),
        avatar_initials=row.avatar_initials or "",
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
