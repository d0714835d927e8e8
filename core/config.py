"""
core/config.py -- TenantAuth configuration, read from the environment via pydantic-settings.

Every environment read in the project goes through get_settings(); nothing
else touches os.environ. Components in auth/ never call get_settings()
themselves: the API lifespan and the CLI read the settings once and pass
plain values (TTLs, hashing cost, throttle thresholds) into constructors.

get_settings() is lru_cached, so Settings is built once per process. Field
names map to env var names (secret_key -> SECRET_KEY, access_token_ttl ->
ACCESS_TOKEN_TTL) and an optional .env file is read as well. Two
model_validators run after all fields resolve: the SECRET_KEY policy and
the token lifetime ordering.

Signing key:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. Both the access
       and the refresh signing keys are derived from it.

  [M7] Without DEBUG=true, a missing SECRET_KEY stops startup.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tenantauth.config")


class Settings(BaseSettings):
    """TenantAuth settings: signing key, token lifetimes, hashing cost, throttles, storage.

    Every field except SECRET_KEY (outside debug mode) has a default, so
    tests build Settings() from a handful of env vars.
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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    log_level: str = "INFO"
    database_url: str = "sqlite:///tenantauth.db"

    # ------------------------------------------------------------------
    # Tokens (seconds)
    # ------------------------------------------------------------------

    access_token_ttl: int = 900
    refresh_token_ttl: int = 604800
    password_reset_ttl: int = 3600

    # ------------------------------------------------------------------
    # Password hashing (argon2id cost parameters)
    # ------------------------------------------------------------------

    hash_time_cost: int = 3
    hash_memory_cost: int = 65536  # KiB
    hash_parallelism: int = 4

    # ------------------------------------------------------------------
    # Rate limiting (attempts per window, window in milliseconds)
    # ------------------------------------------------------------------

    login_rate_limit_attempts: int = 5
    login_rate_limit_window_ms: int = 900_000
    signup_rate_limit_attempts: int = 3
    signup_rate_limit_window_ms: int = 3_600_000
    forgot_password_rate_limit_attempts: int = 3
    forgot_password_rate_limit_window_ms: int = 3_600_000

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    # How often the API lifespan compacts expired sessions, reset tokens and
    # rate-limit windows. Expiry is always checked at read time regardless.
    purge_interval_seconds: int = 3600

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Resolve the signing key [M7].

        DEBUG=true and no key: generate one for this process and warn.
            Every issued token dies with the process.

        Otherwise a missing key is fatal.

        Keys shorter than 32 characters are always rejected [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("No SECRET_KEY configured; generated an ephemeral signing key for this process")
            else:
                raise ValueError(
                    "SECRET_KEY is required unless DEBUG=true. "
                    "It signs every access and refresh token; "
                    "set it in the environment or in .env."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_token_lifetimes(self) -> "Settings":
        """Token lifetimes must be positive and refresh tokens must outlive access tokens."""
        for name in ("access_token_ttl", "refresh_token_ttl", "password_reset_ttl"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be a positive number of seconds.")
        if self.refresh_token_ttl <= self.access_token_ttl:
            raise ValueError("REFRESH_TOKEN_TTL must be greater than ACCESS_TOKEN_TTL.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings.

    Tests that change environment variables must call get_settings.cache_clear()
    before and after.
    """
    return Settings()
