"""
Application settings using Pydantic.

Provides environment-based configuration loading with CFHUB_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Logging
    log_level: str = "INFO"

    # HTTP client settings
    http_timeout: float = 30.0
    http_max_retries: int = 3
    http_retry_initial_delay: float = 1.0
    http_retry_backoff_multiplier: float = 2.0
    http_retry_max_delay: float = 30.0

    # Cloudflare
    cloudflare_base_url: str = "https://api.cloudflare.com/client/v4"
    cloudflare_api_token: str | None = None
    cloudflare_api_key: str | None = None
    cloudflare_email: str | None = None
    cloudflare_account_id: str | None = None

    # GitHub
    github_base_url: str = "https://api.github.com"
    github_token: str | None = None
    github_oauth_token: str | None = None
    # Comma separated owner/name list whose deployments and environments are reconciled
    github_repositories: str | None = None
    # Comma separated organizations whose repositories are reconciled alongside the user's own
    github_organizations: str | None = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "CFHUB_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
