"""Application settings loaded from environment variables.

Environment Configuration:
    QUERYGENIE_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: PostgreSQL connection string (required)
    QUERYGENIE_INTERNAL_SECRET: Internal API secret (required in staging/prod)

Auth Configuration (required outside the test environment):
    AUTH_JWKS_URL: Full URL to the identity provider's JWKS endpoint
    AUTH_ISSUER: Expected JWT issuer (trailing slash stripped)
    AUTH_AUDIENCES: Comma-separated list of allowed audiences

Credential Vault:
    QUERYGENIE_KEY_ENCRYPTION_KEY: Base64-encoded 32-byte master key
        (required in staging/prod)

Invitations / Email:
    APP_BASE_URL: Public base URL used to build invitation links
    INVITATION_TTL_DAYS: Invitation lifetime in days (default 7)
    RESEND_API_KEY: Resend API key; when unset, emails are logged instead of sent
    EMAIL_FROM: Sender address for outgoing email
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - DATABASE_URL is always required
    - AUTH_JWKS_URL, AUTH_ISSUER, AUTH_AUDIENCES are required outside test
    - QUERYGENIE_INTERNAL_SECRET, QUERYGENIE_KEY_ENCRYPTION_KEY and
      RESEND_API_KEY are required in staging and prod only
    """

    querygenie_env: Environment = Field(default=Environment.LOCAL, alias="QUERYGENIE_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]
    querygenie_internal_secret: str | None = Field(
        default=None, alias="QUERYGENIE_INTERNAL_SECRET"
    )

    # Auth settings
    auth_jwks_url: str | None = Field(default=None, alias="AUTH_JWKS_URL")
    auth_issuer: str | None = Field(default=None, alias="AUTH_ISSUER")
    auth_audiences: str | None = Field(default=None, alias="AUTH_AUDIENCES")

    # Credential vault master key (base64, 32 bytes)
    querygenie_key_encryption_key: str | None = Field(
        default=None, alias="QUERYGENIE_KEY_ENCRYPTION_KEY"
    )

    # Invitations
    app_base_url: str = Field(default="http://localhost:3000", alias="APP_BASE_URL")
    invitation_ttl_days: int = Field(default=7, ge=1, le=90, alias="INVITATION_TTL_DAYS")

    # Email delivery
    resend_api_key: str | None = Field(default=None, alias="RESEND_API_KEY")
    email_from: str = Field(default="QueryGenie <noreply@querygenie.dev>", alias="EMAIL_FROM")
    email_timeout_s: float = Field(default=10.0, alias="EMAIL_TIMEOUT_S")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure environment-dependent settings are present."""
        if self.querygenie_env != Environment.TEST:
            missing_auth = []
            if not self.auth_jwks_url:
                missing_auth.append("AUTH_JWKS_URL")
            if not self.auth_issuer:
                missing_auth.append("AUTH_ISSUER")
            if not self.auth_audiences:
                missing_auth.append("AUTH_AUDIENCES")

            if missing_auth:
                raise ValueError(
                    f"Missing required auth settings: {', '.join(missing_auth)}. "
                    "Set these environment variables or use QUERYGENIE_ENV=test."
                )

        if self.querygenie_env in (Environment.STAGING, Environment.PROD):
            if not self.querygenie_internal_secret:
                raise ValueError(
                    "QUERYGENIE_INTERNAL_SECRET is required for "
                    f"QUERYGENIE_ENV={self.querygenie_env.value}"
                )
            if not self.querygenie_key_encryption_key:
                raise ValueError(
                    "QUERYGENIE_KEY_ENCRYPTION_KEY is required for "
                    f"QUERYGENIE_ENV={self.querygenie_env.value}"
                )
            if not self.resend_api_key:
                raise ValueError(
                    f"RESEND_API_KEY is required for QUERYGENIE_ENV={self.querygenie_env.value}"
                )

        return self

    @property
    def requires_internal_header(self) -> bool:
        """Whether requests must include the internal secret header."""
        return self.querygenie_env in (Environment.STAGING, Environment.PROD)

    @property
    def audience_list(self) -> list[str]:
        """Parse comma-separated audiences into a list."""
        if self.auth_audiences:
            return [a.strip() for a in self.auth_audiences.split(",") if a.strip()]
        return []

    @property
    def normalized_issuer(self) -> str | None:
        """Return issuer with trailing slash stripped."""
        if self.auth_issuer:
            return self.auth_issuer.rstrip("/")
        return None

    @property
    def invitation_base_url(self) -> str:
        """Base URL for invitation links, without trailing slash."""
        return self.app_base_url.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
