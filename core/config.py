"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the training portal happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. schoolbox_shared_secret -> SCHOOLBOX_SHARED_SECRET).

  @model_validator(mode="after"): Applies the DEBUG-conditional secret policy.
      Dev mode fills placeholders with a warning; production mode refuses to
      start without real secrets.

Security notes:
  [S1] SCHOOLBOX_SHARED_SECRET is the only thing standing between an attacker
       and a forged handshake. A placeholder is accepted in dev mode only.
       If a real deployment is started with DEBUG=true the placeholder becomes
       the live secret -- an operational risk, not a logic bug.

  [S2] SESSION_SECRET_KEY signs the session cookie. Keys shorter than 32
       characters are rejected.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("training.config")

PLACEHOLDER_SECRET = "placeholder-secret"
PLACEHOLDER_BASE_URL = "https://placeholder.schoolbox.com"
PLACEHOLDER_API_TOKEN = "placeholder-token"  # noqa: S105 -- sentinel, not a credential

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'training_portal.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Schoolbox handshake + directory API
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured".
    schoolbox_shared_secret: str = ""
    schoolbox_base_url: str = ""
    schoolbox_api_token: str = ""
    schoolbox_page_size: int = 500
    # Hard ceiling on cursor pages per roster fetch.
    schoolbox_max_pages: int = 20
    schoolbox_timeout_seconds: float = 10.0
    handshake_tolerance_seconds: int = 300

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    # Comma-separated usernames that always receive the admin flag.
    admin_usernames: str = ""
    institution_email_domain: str = "scr.vic.edu.au"
    # HR role currently also grants the admin session flag. Set false to keep
    # the two flags independent.
    hr_grants_admin: bool = True

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    session_secret_key: str = ""
    session_duration_seconds: int = 3600

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    verify_rate_limit: str = "30/minute"

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def admin_allowlist(self) -> frozenset[str]:
        """Lower-cased, trimmed usernames from ADMIN_USERNAMES."""
        return frozenset(u.strip().lower() for u in self.admin_usernames.split(",") if u.strip())

    @property
    def schoolbox_configured(self) -> bool:
        """True when the directory API has a real base URL and token."""
        return bool(
            self.schoolbox_base_url
            and self.schoolbox_api_token
            and self.schoolbox_base_url != PLACEHOLDER_BASE_URL
            and self.schoolbox_api_token != PLACEHOLDER_API_TOKEN
        )

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the secret policy [S1][S2].

        Dev mode (DEBUG=true): missing values are replaced by placeholders
            (handshake secret, directory URL/token) or a random key (session
            signing) and a warning is logged.

        Production mode: a missing handshake secret or session key is a hard
            startup failure.
        """
        self.schoolbox_base_url = self.schoolbox_base_url.strip().rstrip("/")
        self.schoolbox_api_token = self.schoolbox_api_token.strip()

        if not self.schoolbox_shared_secret:
            if not self.debug:
                raise ValueError(
                    "SCHOOLBOX_SHARED_SECRET is required in production mode. "
                    "To run in development mode, set DEBUG=true."
                )
            self.schoolbox_shared_secret = PLACEHOLDER_SECRET
            logger.warning("WARNING: Using placeholder SCHOOLBOX_SHARED_SECRET. Real handshakes will not verify.")

        if not self.schoolbox_base_url:
            self.schoolbox_base_url = PLACEHOLDER_BASE_URL
        if not self.schoolbox_api_token:
            self.schoolbox_api_token = PLACEHOLDER_API_TOKEN

        if not self.session_secret_key:
            if not self.debug:
                raise ValueError(
                    "SESSION_SECRET_KEY is required in production mode. "
                    "Set SESSION_SECRET_KEY in your environment or .env file."
                )
            self.session_secret_key = secrets.token_hex(32)
            logger.warning("WARNING: Using auto-generated SESSION_SECRET_KEY. Sessions will not persist across restarts.")
        if len(self.session_secret_key) < 32:
            raise ValueError("SESSION_SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
