"""
Core application configuration using Pydantic Settings.

All environment variables are loaded here and validated. Settings are built
once by the application factory and injected; nothing reads the environment
at import time.
"""

from typing import Optional

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

REQUIRED_VARIABLES = (
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "APP_BASE_URL",
    "COOKIE_SECRET",
)


class ConfigurationError(Exception):
    """Raised when the environment is missing required configuration."""

    def __init__(self, missing: list):
        self.missing = list(missing)
        names = ", ".join(self.missing)
        super().__init__(
            f"Missing required environment variable: {names}. "
            f"See .env.example for documentation."
        )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # App Configuration
    APP_NAME: str = "Switchboard"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # OAuth - Google
    GOOGLE_CLIENT_ID: str
    GOOGLE_CLIENT_SECRET: str

    # Public base URL (redirect URI + cookie Secure flag)
    APP_BASE_URL: str

    # Base64-encoded 32-byte key for the refresh-token cookie (AES-256-GCM)
    COOKIE_SECRET: str

    # Offline thread cache
    CACHE_DATABASE_URL: str = "sqlite+aiosqlite:///./switchboard-cache.db"

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # Sentry Monitoring
    SENTRY_DSN: Optional[str] = None

    # Rate Limiting
    RATE_LIMIT_DEFAULT: str = "200/minute"
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    @field_validator(*REQUIRED_VARIABLES)
    @classmethod
    def reject_blank(cls, v: str) -> str:
        """Whitespace-only values count as missing."""
        if not v or not v.strip():
            raise ValueError("blank")
        return v.strip()

    @field_validator("APP_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def redirect_uri(self) -> str:
        """OAuth callback URL registered with Google."""
        return f"{self.APP_BASE_URL}/auth/callback"

    @property
    def cookie_secure(self) -> bool:
        """Cookies carry the Secure flag only when served over TLS."""
        return self.APP_BASE_URL.startswith("https")


def load_settings(**overrides) -> Settings:
    """
    Build and validate settings, failing fast with the missing variable names.

    Args:
        **overrides: Explicit values (used by tests and scripts)

    Returns:
        Validated Settings instance

    Raises:
        ConfigurationError: If any required variable is missing or blank
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        missing = []
        for error in e.errors():
            field = str(error["loc"][0]) if error.get("loc") else ""
            if field in REQUIRED_VARIABLES and field not in missing:
                missing.append(field)
        if missing:
            raise ConfigurationError(missing) from e
        raise
