from typing import Final, Literal

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import DEFAULT_DATABASE_URL, DEFAULT_PORT


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env files."""

    # Server configuration
    debug: bool = Field(default=True, description="Enable debug mode")
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535, description="Server port")

    # Database configuration
    database_url: str = Field(
        default=DEFAULT_DATABASE_URL, description="Database connection URL"
    )

    # Application configuration
    app_name: str = Field(default="Admin Claim Recovery", description="App name")
    version: str = Field(default="0.1.0", description="Application version")

    # Recovery policy
    endorsements_required: int = Field(
        default=2, ge=1, description="Support votes needed to approve a claim"
    )
    claim_ttl_days: int = Field(
        default=7, ge=1, description="Days a pending claim stays open"
    )
    cooling_off_days: int = Field(
        default=7, ge=0, description="Waiting period between approval and grant"
    )
    grant_grace_days: int = Field(
        default=7, ge=0, description="Days after cooling-off to execute the grant"
    )
    oppose_policy: Literal["count", "majority"] = Field(
        default="count",
        description="'count': deny once oppose votes reach oppose_threshold; "
        "'majority': deny once oppose votes are at least the support votes",
    )
    oppose_threshold: int = Field(
        default=2, ge=1, description="Oppose votes that deny a claim ('count')"
    )

    # Email challenge
    challenge_ttl_hours: int = Field(
        default=24, ge=1, description="Lifetime of an email challenge token"
    )
    challenge_reissue_cooldown_seconds: int = Field(
        default=300, ge=0, description="Minimum delay between challenge emails"
    )
    challenge_max_issues: int = Field(
        default=5, ge=1, description="Maximum challenge emails per claim"
    )

    # Concurrency
    transaction_max_attempts: int = Field(
        default=5, ge=1, description="Attempts for a write that lost a race"
    )
    transaction_retry_backoff_ms: int = Field(
        default=25, ge=0, description="Linear backoff step between attempts"
    )

    # Background sweep
    sweep_enabled: bool = Field(default=True, description="Run the expiry sweep")
    sweep_interval_seconds: int = Field(
        default=300, ge=1, description="Seconds between expiry sweeps"
    )

    # Email delivery
    email_backend: Literal["log", "resend"] = Field(
        default="log", description="Where challenge emails are delivered"
    )
    resend_api_key: str | None = Field(default=None, description="Resend API key")
    email_from: str = Field(
        default="LifeScribe <noreply@lifescribe.app>",
        description="Sender of challenge emails",
    )
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL used to build verification links",
    )

    # Logging configuration
    log_to_file: bool = Field(
        default=False, description="Force logging to file even in debug mode"
    )

    # Pydantic Settings configuration
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.debug

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug


# Global settings instance
settings: Final = Settings()
