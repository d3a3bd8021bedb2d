"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for PageGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. firebase_project_id -> FIREBASE_PROJECT_ID).

Identity provider secrets are NOT validated when Settings loads. A missing
service-account variable is a ConfigurationFatal raised by
identity_provider_credentials(), which the provider lifecycle calls during
startup. Loading settings alone (CLI history, tests) must not require them.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, or activity/.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigurationFatal

logger = logging.getLogger("pagegate.config")

_ROOT = Path(__file__).resolve().parent.parent

# Firebase accepts 5 minutes .. 14 days; the gateway caps sessions at 5 days.
MIN_SESSION_LIFETIME = 5 * 60
MAX_SESSION_LIFETIME = 5 * 24 * 60 * 60

DEFAULT_PROTECTED_PAGES = [
    "dashboard",
    "apps",
    "tutorials",
    "html",
    "css",
    "javascript",
    "python",
    "cpp",
    "mysql",
    "profile",
    "news",
    "certificate",
    "account",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("ENVIRONMENT", "NODE_ENV"),
    )

    # ------------------------------------------------------------------
    # Identity provider (Firebase service account)
    # ------------------------------------------------------------------

    firebase_project_id: str = ""
    firebase_client_email: str = ""
    firebase_private_key: str = ""

    # ------------------------------------------------------------------
    # Sessions and startup
    # ------------------------------------------------------------------

    session_lifetime_seconds: int = MAX_SESSION_LIFETIME
    init_policy: str = "fail_fast"  # "fail_fast" | "retry"
    init_retry_base_seconds: float = 1.0
    init_retry_cap_seconds: float = 60.0

    # ------------------------------------------------------------------
    # Storage and pages
    # ------------------------------------------------------------------

    activity_db_url: str = f"sqlite:///{_ROOT / 'activity' / 'pagegate_activity.db'}"
    public_dir: Path = _ROOT / "public"
    protected_dir: Path = _ROOT / "private-views"
    protected_pages: list[str] = Field(default_factory=lambda: list(DEFAULT_PROTECTED_PAGES))

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    )
    allowed_hosts: list[str] = Field(default_factory=lambda: ["*"])

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("firebase_private_key")
    @classmethod
    def normalize_private_key(cls, value: str) -> str:
        """Turn escaped newlines into real ones.

        Secret stores and .env files usually carry the PEM on one line with
        literal backslash-n sequences. The key parser needs real newlines.
        """
        return value.replace("\\n", "\n")

    @field_validator("session_lifetime_seconds")
    @classmethod
    def validate_session_lifetime(cls, value: int) -> int:
        if not MIN_SESSION_LIFETIME <= value <= MAX_SESSION_LIFETIME:
            raise ValueError(
                f"SESSION_LIFETIME_SECONDS must be between {MIN_SESSION_LIFETIME} and {MAX_SESSION_LIFETIME}."
            )
        return value

    @field_validator("init_policy")
    @classmethod
    def validate_init_policy(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("fail_fast", "retry"):
            raise ValueError("INIT_POLICY must be 'fail_fast' or 'retry'.")
        return value

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def secure_cookies(self) -> bool:
        """The session cookie is marked Secure only in production."""
        return self.is_production

    def identity_provider_credentials(self) -> dict[str, str]:
        """Return the service-account mapping for the identity provider client.

        Raises ConfigurationFatal naming every missing variable. Values are
        never included in the message.
        """
        missing = [
            name
            for name, value in (
                ("FIREBASE_PROJECT_ID", self.firebase_project_id),
                ("FIREBASE_CLIENT_EMAIL", self.firebase_client_email),
                ("FIREBASE_PRIVATE_KEY", self.firebase_private_key),
            )
            if not value
        ]
        if missing:
            raise ConfigurationFatal(f"Missing identity provider configuration: {', '.join(missing)}")
        return {
            "type": "service_account",
            "project_id": self.firebase_project_id,
            "client_email": self.firebase_client_email,
            "private_key": self.firebase_private_key,
            "token_uri": "https://oauth2.googleapis.com/token",
        }

    def log_identity_provider_presence(self) -> None:
        """Log which provider variables are set, as booleans only."""
        logger.info(
            "Identity provider config: has_project_id=%s has_client_email=%s has_private_key=%s",
            bool(self.firebase_project_id),
            bool(self.firebase_client_email),
            bool(self.firebase_private_key),
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
