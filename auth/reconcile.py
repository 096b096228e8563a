"""
auth/reconcile.py -- Map Schoolbox identities onto local user rows.

Matching rule: a Schoolbox profile belongs to the local user whose email is
equal ignoring case. On a match only the display name is ever updated (and
only when it changed). With no match a new row is created with roles
["staff"] and active=True.

Two callers:
  reconcile()   -- one profile, at SSO login time (/api/verify).
  sync_roster() -- every staff profile, from the admin sync endpoint / CLI.

Race handling: the store's UNIQUE(email_normalized) constraint arbitrates
concurrent first logins. The losing insert raises DuplicateEmailError and
reconcile() re-reads the winner's row instead of failing the login.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from auth.models import AccessFlags, LocalUser
from auth.store import DuplicateEmailError, PersistenceError, UserStore, normalize_email
from core.models import RemoteUserProfile

logger = logging.getLogger("training.auth.reconcile")


@dataclass
class SyncStats:
    total: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0


def get_initials(name: str) -> str:
    """First letter of each word, upper-cased, at most two characters."""
    return "".join(part[0] for part in name.split() if part).upper()[:2]


def resolve_email(profile: RemoteUserProfile, domain: str) -> str:
    """Profile email, or a synthesized username@domain when Schoolbox has none."""
    return profile.email or f"{profile.username}@{domain}"


def reconcile(store: UserStore, profile: RemoteUserProfile, *, email_domain: str) -> LocalUser:
    """Return the local user for a Schoolbox profile, creating it if needed.

    Writes at most once: an insert for a new email, an update when the name
    changed, nothing otherwise.

    Raises PersistenceError if the store fails.
    """
    email = resolve_email(profile, email_domain)
    name = profile.full_name

    existing = store.get_by_email(email)
    if existing is not None:
        return _refresh_name(store, existing, name)

    logger.info("Creating local user for %s", email)
    try:
        return store.create_user(
            LocalUser(
                name=name,
                email=email,
                roles=["staff"],
                active=True,
                avatar_initials=get_initials(name),
            )
        )
    except DuplicateEmailError:
        # A concurrent login inserted the same email first.
        winner = store.get_by_email(email)
        if winner is None:
            raise
        logger.info("Concurrent first login for %s; using existing user %s", email, winner.id)
        return _refresh_name(store, winner, name)


def _refresh_name(store: UserStore, user: LocalUser, name: str) -> LocalUser:
    if user.name == name:
        return user
    initials = get_initials(name)
    logger.info("Updating name for user %s", user.id)
    if not store.update_user(user.id, name=name, avatar_initials=initials):
        raise PersistenceError(f"Failed to update user {user.id}: row disappeared")
    user.name = name
    user.avatar_initials = initials
    return user


def derive_flags(
    username: str,
    user: LocalUser,
    admin_allowlist: Iterable[str],
    *,
    hr_grants_admin: bool = True,
) -> AccessFlags:
    """Compute the session's authorization flags.

    is_admin: username on the allowlist, or the admin / super_admin role, or
        (while hr_grants_admin is set) the hr role.
    is_hr: the hr role, independent of is_admin.
    """
    roles = set(user.roles)
    allowlist = {u.lower() for u in admin_allowlist}
    is_hr = "hr" in roles
    is_admin = (
        username.lower() in allowlist or "admin" in roles or "super_admin" in roles or (hr_grants_admin and is_hr)
    )
    return AccessFlags(is_admin=is_admin, is_hr=is_hr)


def sync_roster(store: UserStore, profiles: Iterable[RemoteUserProfile]) -> SyncStats:
    """Create or rename local users for a batch of staff profiles.

    Profiles without an email are skipped -- bulk sync never synthesizes an
    address. A failing insert for one profile (e.g. a duplicate created since
    the snapshot was taken) counts as skipped; any other store error aborts.
    """
    stats = SyncStats()
    by_email = {normalize_email(u.email): u for u in store.list_users()}

    for profile in profiles:
        stats.total += 1
        if not profile.email:
            logger.info("Skipping %s -- no email", profile.full_name or profile.username)
            stats.skipped += 1
            continue

        key = normalize_email(profile.email)
        existing = by_email.get(key)
        if existing is not None:
            if existing.name != profile.full_name:
                _refresh_name(store, existing, profile.full_name)
                stats.updated += 1
            else:
                stats.skipped += 1
            continue

        try:
            created = store.create_user(
                LocalUser(
                    name=profile.full_name,
                    email=profile.email,
                    roles=["staff"],
                    active=True,
                    avatar_initials=get_initials(profile.full_name),
                )
            )
        except DuplicateEmailError as e:
            logger.warning("Sync could not create %s: %s", profile.email, e)
            stats.skipped += 1
            continue
        by_email[key] = created
        stats.created += 1

    logger.info(
        "Sync complete: %d created, %d updated, %d skipped (of %d)",
        stats.created,
        stats.updated,
        stats.skipped,
        stats.total,
    )
    return stats
