"""Configuration management via environment variables.

Reads from .env file (via pydantic-settings) with sensible defaults.
All values can be overridden via environment variables prefixed with
``PORTAL_`` (e.g. ``PORTAL_API_BASE_URL``).

Optional:
    PORTAL_API_BASE_URL: Forecasting backend host (default: local dev server)
    PORTAL_SESSION_SECRET: Key used to sign the session cookie
    PORT: Server port (hosting platforms set this)
"""

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Backend REST API that owns auth, file processing and forecasting
    api_base_url: str = "http://127.0.0.1:8000"

    # Session cookie signing. Override in every deployed environment.
    session_secret: str = "cashflow-portal-dev-secret"
    session_max_age: int = 8 * 60 * 60

    # Seconds before an outbound backend call is abandoned
    request_timeout: float = 30.0

    # Page sizes for /summary-output/usd
    summary_page_size: int = 10
    report_page_size: int = 100

    # Server port (PORT is honoured for hosted deployments)
    port: int = Field(default=3000, validation_alias=AliasChoices("PORTAL_PORT", "PORT"))

    # Strip whitespace and stray quotes; .env files often carry both
    @field_validator("api_base_url", "session_secret", mode="before")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip().strip('"').strip("'").strip()
        return v

    @field_validator("api_base_url")
    @classmethod
    def drop_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    model_config = SettingsConfigDict(
        env_prefix="PORTAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


_config: Settings | None = None


def get_config() -> Settings:
    """Get or create the shared Settings singleton."""
    global _config
    if _config is None:
        _config = Settings()
    return _config


def reset_config() -> None:
    """Drop the cached Settings so the next get_config() re-reads the env."""
    global _config
    _config = None
