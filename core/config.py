"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for QueryBoard happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. data_dir -> DATA_DIR). Type coercion and validation are built in.

Security notes:
  STARTUP_PASSWORD is only used once, when the system database has no users.
  Leave it blank in production so a random temporary password is generated
  and written to the log instead of living in the environment.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or db/.
"""

import logging
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("queryboard.config")

# The literal value of DATA_DIR that selects a throwaway in-memory database.
MEMORY_DATA_DIR = ":memory:"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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

    # Directory for database files. ":memory:" keeps everything in RAM and
    # skips directory creation.
    data_dir: str = "./data"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # Temporary password for the first admin. Blank = generate one at startup.
    startup_password: str = ""
    bcrypt_rounds: int = 10

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"):
            raise ValueError(f"LOG_LEVEL must be a standard logging level, not {value!r}.")
        return level

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, value: int) -> int:
        """bcrypt only accepts cost factors 4..31; fail at startup rather than on first hash."""
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if value < 10:
            logger.warning("BCRYPT_ROUNDS=%d is below the recommended minimum of 10", value)
        return value


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: set environment variables before the first import of any
    project module, or call get_settings.cache_clear() to re-read them.
    """
    return Settings()
