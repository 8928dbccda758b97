"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for LeadBridge happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Only the
      app assembly (api/main.py) calls it; components receive the values they
      need through their constructors.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens every session token.

  A missing SECRET_KEY is a hard startup failure in every mode, DEBUG
       included. There is no development default key.

Layer rule: core/ is the kernel. This module may not import from api/, auth/
or crm/.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent.parent / 'leadbridge.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Every field except secret_key has a default so Settings() can be
    instantiated in test environments with only SECRET_KEY exported.

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `secret_key` reads from SECRET_KEY, `crm_client_id` from CRM_CLIENT_ID.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    # Development mode: error responses carry the exception text.
    debug: bool = False
    # Empty string is the sentinel for "not configured"; the validator raises.
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    # Set SECURE_COOKIES=true in production (HTTPS only cookies).
    secure_cookies: bool = False
    session_expire_days: int = 30
    session_cookie_name: str = "token"

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    api_url: str = "http://localhost:3001"
    frontend_url: str = "http://localhost:3000"
    oauth_redirect_path: str = "/dashboard"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:3001"]

    # ------------------------------------------------------------------
    # CRM OAuth provider (empty client id/secret means not configured)
    # ------------------------------------------------------------------

    crm_provider_name: str = "ghl"
    crm_client_id: str = ""
    crm_client_secret: str = ""
    crm_token_url: str = "https://services.leadconnectorhq.com/oauth/token"  # noqa: S105 -- URL, not a password
    crm_api_base_url: str = "https://services.leadconnectorhq.com/"
    crm_api_version: str = "2021-07-28"
    provider_timeout_seconds: float = 10.0
    # Tokens closer than this to expiry are refreshed before use.
    token_refresh_margin_seconds: int = 300
    # Lifetime assumed when a token response carries no expires_in.
    crm_default_token_ttl_seconds: int = 3600

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def oauth_callback_url(self) -> str:
        """redirect_uri registered with the provider for the code exchange."""
        return f"{self.api_url.rstrip('/')}/api/auth/oauth-callback"

    @property
    def session_max_age(self) -> int:
        """Session cookie and token lifetime in seconds."""
        return self.session_expire_days * 24 * 60 * 60

    @property
    def crm_configured(self) -> bool:
        return bool(self.crm_client_id and self.crm_client_secret)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        A missing key refuses startup regardless of DEBUG: a silently
        generated key would invalidate every issued session on restart and
        hide the misconfiguration until production.
        """
        if not self.secret_key:
            raise ValueError(
                "SECRET_KEY is required. "
                "Set SECRET_KEY in your environment or .env file "
                "(generate one with: openssl rand -hex 32)."
            )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
