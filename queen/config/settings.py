"""
Configuration management for the Hivemoot Queen governance bot.

This module provides environment-based configuration using Pydantic Settings.
Supports loading from .env files, environment variables, and provides
startup validation with clear error messages.

Per-repository governance rules (phase exits, intake, PR cap) are not
process settings; they live in `.github/hivemoot.yml` and are loaded by
`queen.config.repo_config`.
"""

from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from queen.utils.logging import get_logger

logger = get_logger(__name__)


class AppSettings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or a .env file.
    Priority: Environment variables > .env file > defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown environment variables
    )

    # ======================
    # GitHub Configuration
    # ======================
    github_token: Optional[str] = None
    """GitHub token (installation token or PAT) used for API access."""
    github_app_id: Optional[int] = None
    """The bot's GitHub App ID; only comments posted via this app are trusted."""
    github_webhook_secret: Optional[str] = None
    """Secret for validating GitHub webhook signatures."""

    # ======================
    # Application Settings
    # ======================
    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR)."""
    environment: str = "development"
    """Application environment (development, staging, production)."""

    # ======================
    # Retry Settings
    # ======================
    retry_max_attempts: int = 3
    """Attempts per GitHub call before a transient error propagates."""
    retry_base_delay: float = 1.0
    """Base delay in seconds for exponential backoff."""
    retry_max_delay: float = 30.0
    """Upper bound in seconds for a single backoff wait."""

    # ======================
    # Reconciliation Settings
    # ======================
    reconcile_interval_seconds: int = 900
    """Seconds between reconciliation sweeps per repository."""
    repositories: list[str] = []
    """Repositories ("owner/repo") the sweep worker walks."""
    intake_link_retry_delay: float = 2.0
    """Seconds to wait before re-reading linked issues of a newly opened PR."""

    # ======================
    # Validators
    # ======================
    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log level is a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(
                f"Invalid log level '{v}'. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        return upper_v

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment name."""
        valid_envs = {"development", "staging", "production"}
        lower_v = v.lower()
        if lower_v not in valid_envs:
            raise ValueError(
                f"Invalid environment '{v}'. Must be one of: {', '.join(sorted(valid_envs))}"
            )
        return lower_v

    @field_validator("retry_max_attempts")
    @classmethod
    def validate_retry_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"retry_max_attempts must be at least 1, got {v}")
        return v

    @field_validator("retry_base_delay", "retry_max_delay", "intake_link_retry_delay")
    @classmethod
    def validate_non_negative_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"delays must be non-negative, got {v}")
        return v

    @field_validator("reconcile_interval_seconds")
    @classmethod
    def validate_reconcile_interval(cls, v: int) -> int:
        """Keep sweeps from hammering the API."""
        if v < 60:
            raise ValueError(f"reconcile_interval_seconds must be at least 60, got {v}")
        return v

    @field_validator("repositories")
    @classmethod
    def validate_repositories(cls, v: list[str]) -> list[str]:
        for full_name in v:
            owner, _, repo = full_name.partition("/")
            if not owner or not repo or "/" in repo:
                raise ValueError(f"Repository must be 'owner/repo', got '{full_name}'")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def has_github_token(self) -> bool:
        """Check if GitHub token is configured."""
        return bool(self.github_token and self.github_token != "ghp_your_github_personal_access_token_here")

    @property
    def has_app_id(self) -> bool:
        """Check if the bot's app identity is configured."""
        return self.github_app_id is not None

    @property
    def has_webhook_secret(self) -> bool:
        """Check if webhook secret is configured."""
        return bool(self.github_webhook_secret and self.github_webhook_secret != "your_webhook_secret_here")

    def validate_for_startup(self) -> list[str]:
        """
        Validate configuration for startup and return warnings.

        Returns a list of warning messages for missing optional configurations.
        Raises ValueError for critical missing configurations in production.
        """
        warnings = []
        errors = []

        if not self.has_github_token:
            if self.is_production:
                errors.append("GITHUB_TOKEN is required in production")
            else:
                warnings.append(
                    "GITHUB_TOKEN not configured - GitHub integration will not work"
                )

        if not self.has_app_id:
            if self.is_production:
                errors.append("GITHUB_APP_ID is required in production")
            else:
                warnings.append(
                    "GITHUB_APP_ID not configured - bot comments cannot be verified, "
                    "idempotency checks will never match"
                )

        if not self.has_webhook_secret:
            if self.is_production:
                errors.append("GITHUB_WEBHOOK_SECRET is required in production")
            else:
                warnings.append(
                    "GITHUB_WEBHOOK_SECRET not configured - webhook signature validation disabled"
                )

        if errors:
            error_msg = "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_msg)

        return warnings

    def log_configuration_summary(self) -> None:
        """Log a summary of the current configuration (without secrets)."""
        logger.info(
            "configuration_summary",
            environment=self.environment,
            log_level=self.log_level,
            github_token_configured=self.has_github_token,
            app_id=self.github_app_id,
            webhook_secret_configured=self.has_webhook_secret,
            retry_max_attempts=self.retry_max_attempts,
            retry_base_delay=self.retry_base_delay,
            reconcile_interval_seconds=self.reconcile_interval_seconds,
            repositories=self.repositories,
        )


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get the global application settings (cached).

    Returns:
        AppSettings: The configured application settings.
    """
    return AppSettings()
