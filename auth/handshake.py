"""
auth/handshake.py -- Schoolbox Remote Services handshake verification.

Schoolbox embeds the portal in an iframe and appends four query parameters:

    key  = SHA1(secret + time + id)   lower-case hex
    time = unix seconds, as a string
    id   = external (staff) id
    user = username

Verification is a pure function of the parameters, the shared secret, and the
wall clock. Both checks must pass:
  1. |now - int(time)| <= 300 seconds (replay window, boundary inclusive).
  2. The provided key equals the recomputed signature exactly.

The caller only ever sees True/False. Which check failed is logged, never
returned. The expected signature is never logged.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

from core.config import get_settings

logger = logging.getLogger("training.auth.handshake")

# Query parameter names, in the order Schoolbox documents them.
HANDSHAKE_PARAMS = ("key", "time", "id", "user")
TIME_TOLERANCE_SECONDS = 300


def _first_value(params: Mapping[str, str], name: str) -> Optional[str]:
    getlist = getattr(params, "getlist", None)
    if getlist is None:
        return params.get(name)
    values = getlist(name)
    return values[0] if values else None


@dataclass
class Handshake:
    """The four handshake parameters from one inbound request. Never persisted."""

    signature: str
    issued_at: str
    external_id: str
    username: str

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> Optional[Handshake]:
        """Return a Handshake if all four parameters are present and non-empty.

        Partial presence is not a handshake -- the gate falls through to its
        normal session checks in that case. A repeated parameter counts by its
        first value (Starlette's QueryParams.get() would return the last).
        """
        values = [_first_value(params, name) for name in HANDSHAKE_PARAMS]
        if not all(values):
            return None
        return cls(*values)

    def to_query(self) -> str:
        return urlencode(
            {"key": self.signature, "time": self.issued_at, "id": self.external_id, "user": self.username}
        )


def compute_signature(secret: str, issued_at: str, external_id: str) -> str:
    """SHA1 over the raw concatenation secret + time + id, as lower-case hex."""
    return hashlib.sha1((secret + issued_at + external_id).encode("utf-8")).hexdigest()  # noqa: S324 -- protocol-mandated


def verify_signature(
    signature: str,
    issued_at: str,
    external_id: str,
    *,
    secret: Optional[str] = None,
    now: Optional[int] = None,
    tolerance: int = TIME_TOLERANCE_SECONDS,
) -> bool:
    """Return True if the handshake signature is valid and fresh.

    Args:
        signature:   The `key` parameter as sent by Schoolbox.
        issued_at:   The `time` parameter, unparsed.
        external_id: The `id` parameter.
        secret:      Shared secret override. Defaults to SCHOOLBOX_SHARED_SECRET.
        now:         Unix seconds override for the clock.
        tolerance:   Replay window in seconds.

    A non-numeric `time` fails closed, as does an empty secret.
    """
    if secret is None:
        secret = get_settings().schoolbox_shared_secret
    if not secret:
        logger.warning("Handshake rejected: no shared secret configured")
        return False

    try:
        timestamp = int(issued_at, 10)
    except (TypeError, ValueError):
        logger.info("Handshake rejected: time %r is not an integer", issued_at)
        return False

    current = int(time.time()) if now is None else now
    if abs(current - timestamp) > tolerance:
        logger.info(
            "Handshake rejected: timestamp out of tolerance (provided=%d now=%d diff=%d tolerance=%d)",
            timestamp,
            current,
            abs(current - timestamp),
            tolerance,
        )
        return False

    expected = compute_signature(secret, issued_at, external_id)
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        logger.info("Handshake rejected: signature mismatch for id=%s", external_id)
        return False
    return True


def verify_handshake(handshake: Handshake, **kwargs) -> bool:
    """verify_signature() applied to a parsed Handshake."""
    return verify_signature(handshake.signature, handshake.issued_at, handshake.external_id, **kwargs)


def sign_handshake(
    external_id: str,
    username: str,
    *,
    secret: Optional[str] = None,
    now: Optional[int] = None,
) -> Handshake:
    """Build a correctly signed Handshake, the way Schoolbox would.

    Used by the CLI to produce local test links and by the test suite.
    """
    if secret is None:
        secret = get_settings().schoolbox_shared_secret
    issued_at = str(int(time.time()) if now is None else now)
    return Handshake(
        signature=compute_signature(secret, issued_at, external_id),
        issued_at=issued_at,
        external_id=external_id,
        username=username,
    )
