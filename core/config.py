"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Cryptify happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The app
      lifespan is the only caller in production; it hands the resulting object
      (or values read from it) to every service constructor.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  frozen=True: the Settings instance is immutable once built. Nothing can
      rewrite the signing secret or pool parameters after startup.

  @model_validator(mode="after"): cross-field validation after all fields are
      resolved. A missing signing secret, federation client id or database
      parameter raises here, which aborts the lifespan and therefore process
      startup rather than the first request.

Security notes:
  JWT_SECRET shorter than 32 chars is rejected outright. HS256 signing relies
  on key entropy -- a short key makes offline brute force of the secret
  feasible from any single issued token.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or balances/.
"""

import re
from functools import lru_cache
from urllib.parse import quote_plus

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

GOOGLE_CERTS_URL = "https://www.googleapis.com/oauth2/v3/certs"

# jsonwebtoken-style durations: bare seconds, or a number with one unit suffix.
_DURATION_RE = re.compile(r"^\s*(\d+)\s*(s|m|h|d|w)?\s*$", re.IGNORECASE)
_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}


def parse_duration(value: str) -> int:
    """Convert a duration string such as "7d", "12h" or "3600" into seconds.

    Raises:
        ValueError: If the string is not a positive duration.
    """
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid duration {value!r}. Use e.g. 3600, 30m, 12h or 7d.")
    amount = int(match.group(1))
    unit = (match.group(2) or "s").lower()
    seconds = amount * _DURATION_UNITS[unit]
    if seconds <= 0:
        raise ValueError("Duration must be greater than zero.")
    return seconds


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Fields that must be supplied by the environment default to "" (the
    "not configured" sentinel) and are checked by validate_required(), so the
    error message names every missing variable at once.
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

    debug: bool = False
    server_port: int = 3450
    log_level: str = "INFO"
    # Empty string disables the file handler; stdout logging is always on.
    log_file: str = "Server.log"

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    # A full SQLAlchemy URL wins over the discrete parameters below.
    database_url: str = ""
    database_host: str = ""
    database_port: int | None = None
    database: str = ""
    database_user: str = ""
    database_password: str = ""
    database_ssl: bool = True
    database_pool_size: int = 20
    database_connect_timeout: float = 5.0
    database_idle_timeout: int = 30

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    jwt_secret: str = ""
    jwt_expires_in: str = "7d"

    # ------------------------------------------------------------------
    # Google identity federation
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_certs_url: str = GOOGLE_CERTS_URL
    google_http_timeout: float = 5.0

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    balance_requires_auth: bool = False

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_required(self) -> "Settings":
        """Refuse to build a Settings object with missing startup configuration.

        Required:
          - JWT_SECRET (at least 32 characters)
          - GOOGLE_CLIENT_ID
          - DATABASE_URL, or all of DATABASE_HOST, DATABASE_PORT, DATABASE,
            DATABASE_USER and DATABASE_PASSWORD
          - JWT_EXPIRES_IN must parse as a positive duration
        """
        missing: list[str] = []
        if not self.jwt_secret:
            missing.append("JWT_SECRET")
        if not self.google_client_id:
            missing.append("GOOGLE_CLIENT_ID")
        if not self.database_url:
            discrete = {
                "DATABASE_HOST": self.database_host,
                "DATABASE_PORT": self.database_port,
                "DATABASE": self.database,
                "DATABASE_USER": self.database_user,
                "DATABASE_PASSWORD": self.database_password,
            }
            missing.extend(name for name, value in discrete.items() if not value)
        if missing:
            raise ValueError(f"Missing required environment variable(s): {', '.join(missing)}")

        if len(self.jwt_secret) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters.")
        parse_duration(self.jwt_expires_in)
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def token_expire_seconds(self) -> int:
        """Session token lifetime in seconds, parsed from JWT_EXPIRES_IN."""
        return parse_duration(self.jwt_expires_in)

    @property
    def sqlalchemy_url(self) -> str:
        """Return the async SQLAlchemy URL for the configured database.

        Discrete parameters are assembled into a postgresql+asyncpg URL with
        the user and password percent-encoded.
        """
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{quote_plus(self.database_user)}:{quote_plus(self.database_password)}"
            f"@{self.database_host}:{self.database_port}/{self.database}"
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
