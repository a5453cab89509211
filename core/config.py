"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for storekeep happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. private_key_path -> PRIVATE_KEY_PATH). Type coercion and validation
      are built in.

  @model_validator(mode="after"): cross-field validation after all fields are
      resolved. Used to refuse symmetric JWT algorithms and to normalise the
      log level.

Security notes:
  [K1] Access tokens are signed with an asymmetric key pair read from
       private_key_path / public_key_path. HS* and "none" are rejected here so
       a misconfigured deployment cannot silently fall back to a shared secret.

  [K2] bcrypt_rounds below 10 is rejected. Lower cost factors make offline
       brute-force of a leaked users table cheap.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("storekeep.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'storekeep_auth.db'}"

# Refresh token revocation on logout; see auth.service.AuthService.logout.
LogoutPolicy = Literal["expired", "presented", "all"]

# Asymmetric JWS algorithms accepted for access tokens [K1].
ASYMMETRIC_ALGORITHMS = frozenset(
    {"RS256", "RS384", "RS512", "PS256", "PS384", "PS512", "ES256", "ES384", "ES512"}
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. Key files are only read when the
    API starts (see api.main.lifespan), not when settings load.
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
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Signing keys [K1]
    # ------------------------------------------------------------------

    private_key_path: Path = Path("private.key")
    public_key_path: Path = Path("public.key")
    jwt_algorithm: str = "RS256"

    # ------------------------------------------------------------------
    # Credential lifetimes
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = Field(default=3600, ge=60)
    refresh_token_expire_days: int = Field(default=7, ge=1)
    # 40 random bytes -> 80 hex characters; at most 127 so the hex token fits
    # the 255-character refresh request field.
    refresh_token_bytes: int = Field(default=40, ge=40, le=127)

    # ------------------------------------------------------------------
    # Credential policy
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=10, le=15)  # [K2]
    # "expired": delete only the caller's expired refresh tokens (baseline)
    # "presented": also delete the refresh token sent in the logout body
    # "all": delete every refresh token the caller owns
    logout_policy: LogoutPolicy = "expired"
    rotate_refresh_tokens: bool = False
    # A refresh token presented from another origin than it was issued to is
    # revoked and rejected.
    bind_refresh_to_origin: bool = True
    # Only enable behind a proxy that overwrites X-Forwarded-For.
    trust_forwarded_for: bool = False
    # 0 disables the background sweep; expired tokens are still purged lazily.
    refresh_token_purge_interval_seconds: int = Field(default=0, ge=0)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = []

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_signing_policy(self) -> "Settings":
        """Reject symmetric or unsigned JWT algorithms [K1]."""
        self.jwt_algorithm = self.jwt_algorithm.upper()
        if self.jwt_algorithm not in ASYMMETRIC_ALGORITHMS:
            raise ValueError(
                f"JWT_ALGORITHM must be an asymmetric algorithm ({', '.join(sorted(ASYMMETRIC_ALGORITHMS))}), "
                f"got {self.jwt_algorithm!r}."
            )
        self.log_level = self.log_level.upper()
        if self.debug and self.log_level == "INFO":
            self.log_level = "DEBUG"
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
