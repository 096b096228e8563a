"""
core/directory.py -- Schoolbox directory API client.

Resolves the identity behind an SSO handshake and pulls the staff roster for
bulk sync. All HTTP goes through one requests.Session owned by a
DirectoryClient instance; api/main.py builds that instance at startup and
hangs it on app.state, so nothing here runs at import time.

Endpoints used:
  GET {base}/api/user/{id}                        -- direct lookup by internal id
  GET {base}/api/user?filter={json}&limit=&cursor= -- filtered, cursor-paginated list

Response shape for the list endpoint:
  {"data": [User, ...], "metadata": {"cursor": {"next": "<token>" | null}}}

Error model:
  NotFoundError  -- the directory answered, but nobody matched.
  UpstreamError  -- unreachable, non-2xx (other than 404), or a payload that
                    does not have the documented shape.
No retries. The only deadline is the per-request HTTP timeout.

Layer rule: core/ is the kernel. No imports from api/, web/, or auth/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from typing import Any, Callable, Optional
from urllib.parse import quote

import requests

from core.config import get_settings
from core.models import STAFF_ROLE_TYPE, DirectoryPage, RemoteUserProfile

logger = logging.getLogger("training.directory")


class DirectoryError(Exception):
    """Base class for directory lookup failures."""


class NotFoundError(DirectoryError):
    """No directory user matched any lookup strategy."""


class UpstreamError(DirectoryError):
    """The directory API was unreachable or answered with something unusable."""


# ---------------------------------------------------------------------------
# Payload mapping
# ---------------------------------------------------------------------------


def to_profile(raw: Any) -> RemoteUserProfile:
    """Map one raw /api/user entry to a RemoteUserProfile.

    Raises ValueError if the entry lacks an integer id or a username -- both
    are required to tie a login back to a person.
    """
    if not isinstance(raw, dict) or not raw.get("id") or not raw.get("username"):
        raise ValueError("directory user entry is missing id or username")
    try:
        internal_id = int(raw["id"])
    except (TypeError, ValueError) as e:
        raise ValueError(f"directory user id is not numeric: {raw['id']!r}") from e

    first = raw.get("firstName") or ""
    last = raw.get("lastName") or ""
    external = raw.get("externalId")
    role = raw.get("role") if isinstance(raw.get("role"), dict) else {}

    return RemoteUserProfile(
        internal_id=internal_id,
        username=str(raw["username"]),
        external_id=str(external) if external not in (None, "") else None,
        first_name=first,
        last_name=last,
        full_name=raw.get("fullName") or f"{first} {last}".strip(),
        email=raw.get("email") or None,
        role_type=role.get("type"),
        role_name=role.get("name"),
        title=raw.get("title") or None,
    )


def is_staff(profile: RemoteUserProfile) -> bool:
    """Return True if Schoolbox reports role.type == "staff"."""
    return profile.role_type == STAFF_ROLE_TYPE


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class DirectoryClient:
    """Thin client over the Schoolbox user API.

    Usage:
        client = DirectoryClient.from_settings()
        profile = client.fetch_user_by_handshake("12345", "jsmith")
        staff = client.fetch_all_staff()
        client.close()

    session is injectable so tests can pass a fake with a .get() method.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        page_size: int = 500,
        max_pages: int = 20,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_size = page_size
        self.max_pages = max_pages
        self._session = session if session is not None else requests.Session()
        # Known API host; 3 hops is generous and limits redirect-chain SSRF.
        self._session.max_redirects = 3
        self._session.headers.update(
            {
                "Authorization": f"Bearer {api_token}",
                "Accept": "application/json",
            }
        )

    @classmethod
    def from_settings(cls) -> DirectoryClient:
        cfg = get_settings()
        return cls(
            base_url=cfg.schoolbox_base_url,
            api_token=cfg.schoolbox_api_token,
            timeout=cfg.schoolbox_timeout_seconds,
            page_size=cfg.schoolbox_page_size,
            max_pages=cfg.schoolbox_max_pages,
        )

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        """GET base_url + path and return the decoded JSON body.

        404 maps to NotFoundError; every other failure maps to UpstreamError
        with the cause chained for the server log.
        """
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Directory request failed for %s: %s", path, e)
            raise UpstreamError(f"Schoolbox API unreachable: {e}") from e

        if resp.status_code == 404:
            raise NotFoundError(f"Schoolbox API returned 404 for {path}")
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            logger.warning("Directory API error %s for %s: %s", resp.status_code, path, resp.text[:200])
            raise UpstreamError(f"Schoolbox API error: {resp.status_code}") from e
        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError(f"Schoolbox API returned malformed JSON for {path}") from e

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def get_user_by_id(self, user_id: int | str) -> RemoteUserProfile:
        """Fetch one user by Schoolbox internal id."""
        payload = self._get_json(f"/api/user/{quote(str(user_id), safe='')}")
        try:
            return to_profile(payload)
        except ValueError as e:
            raise UpstreamError(f"Malformed user payload for id {user_id}: {e}") from e

    def fetch_users_by_filter(
        self,
        filter_obj: Optional[dict[str, Any]] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> DirectoryPage:
        """Fetch a single page of users matching an equality filter.

        Entries without an id or username are dropped, matching how the
        roster sync has always treated them.
        """
        params: dict[str, Any] = {"limit": limit or self.page_size}
        if filter_obj:
            params["filter"] = json.dumps(filter_obj)
        if cursor:
            params["cursor"] = cursor

        payload = self._get_json("/api/user", params=params)
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            raise UpstreamError("Schoolbox API list response has no data array")

        items: list[RemoteUserProfile] = []
        for raw in payload["data"]:
            try:
                items.append(to_profile(raw))
            except ValueError:
                logger.debug("Skipping directory entry without id/username")

        metadata = payload.get("metadata")
        cursor_info = metadata.get("cursor") if isinstance(metadata, dict) else None
        next_cursor = cursor_info.get("next") if isinstance(cursor_info, dict) else None
        return DirectoryPage(items=items, next_cursor=next_cursor or None)

    def iter_user_pages(self, filter_obj: Optional[dict[str, Any]] = None) -> Iterator[DirectoryPage]:
        """Yield pages one at a time, following next_cursor.

        Sequential: each page is awaited before the next is requested. Stops
        when the cursor runs out or after max_pages pages. A failing page
        raises out of the generator -- callers never see a silently partial
        roster.
        """
        cursor: Optional[str] = None
        pages = 0
        while True:
            page = self.fetch_users_by_filter(filter_obj, cursor=cursor)
            pages += 1
            logger.debug("Directory page %d: %d users", pages, len(page.items))
            yield page
            cursor = page.next_cursor
            if not cursor:
                return
            if pages >= self.max_pages:
                logger.warning("Directory pagination stopped at the %d-page ceiling", self.max_pages)
                return

    # ------------------------------------------------------------------
    # Handshake resolution
    # ------------------------------------------------------------------

    def fetch_user_by_handshake(self, external_id: str, username: Optional[str] = None) -> RemoteUserProfile:
        """Resolve a handshake's (id, user) pair to a directory profile.

        Strategies, in order, stopping at the first hit:
          1. external_id as Schoolbox's internal numeric id (direct GET)
          2. filter {"externalId": external_id}
          3. filter {"username": username}
          4. filter {"username": external_id} -- some schools use the two
             interchangeably

        A strategy that raises or returns nothing falls through to the next.
        Raises UpstreamError if every strategy failed and at least one of the
        failures was an upstream fault; NotFoundError otherwise.
        """
        strategies: list[tuple[str, Optional[str], Callable[[], Optional[RemoteUserProfile]]]] = [
            ("id", external_id if external_id.isdigit() else None, lambda: self.get_user_by_id(external_id)),
            ("externalId", external_id, lambda: self._first_match({"externalId": external_id})),
            ("username", username, lambda: self._first_match({"username": username})),
            ("username<-externalId", external_id, lambda: self._first_match({"username": external_id})),
        ]

        upstream_failure: Optional[UpstreamError] = None
        for label, value, attempt in strategies:
            if not value:
                continue
            try:
                profile = attempt()
            except NotFoundError:
                profile = None
            except UpstreamError as e:
                upstream_failure = e
                logger.info("Directory lookup by %s failed: %s", label, e)
                continue
            if profile is not None:
                logger.info("Directory user %s resolved via %s lookup", profile.internal_id, label)
                return profile
            logger.debug("Directory lookup by %s=%s found nothing", label, value)

        if upstream_failure is not None:
            raise UpstreamError(f"Could not resolve user {external_id!r}: {upstream_failure}") from upstream_failure
        raise NotFoundError(f"User not found with externalId: {external_id} or username: {username}")

    def _first_match(self, filter_obj: dict[str, Any]) -> Optional[RemoteUserProfile]:
        page = self.fetch_users_by_filter(filter_obj)
        return page.items[0] if page.items else None

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    def iter_all_staff(self) -> Iterator[RemoteUserProfile]:
        """Lazily yield every staff profile across all pages.

        The API cannot filter on the nested role object, so every user is
        listed and non-staff are dropped here.
        """
        for page in self.iter_user_pages():
            for profile in page.items:
                if is_staff(profile):
                    yield profile

    def fetch_all_staff(self) -> list[RemoteUserProfile]:
        """Return the full staff roster. Any page failure propagates."""
        staff = list(self.iter_all_staff())
        logger.info("Fetched %d staff from Schoolbox", len(staff))
        return staff
