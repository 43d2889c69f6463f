"""Runtime configuration using Pydantic settings."""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_CONFIG = dict(
    env_file=".env",
    env_file_encoding="utf-8",
    env_ignore_empty=True,
    extra="ignore",
    populate_by_name=True,
)


class GoogleOAuthSettings(BaseSettings):
    """Manager-account OAuth credentials; client id and secret accept several aliases."""

    client_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GBP_CLIENT_ID", "GOOGLE_CLIENT_ID", "GOOGLE_OAUTH_CLIENT_ID"),
    )
    client_secret: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "GBP_CLIENT_SECRET", "GOOGLE_CLIENT_SECRET", "GOOGLE_OAUTH_CLIENT_SECRET"
        ),
    )
    access_token: Optional[str] = Field(default=None, alias="GBP_ACCESS_TOKEN")
    refresh_token: Optional[str] = Field(default=None, alias="GBP_REFRESH_TOKEN")
    token_url: str = "https://oauth2.googleapis.com/token"

    model_config = SettingsConfigDict(**ENV_CONFIG)


class PipedreamSettings(BaseSettings):
    project_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    environment: str = "production"
    base_url: str = "https://api.pipedream.com/v1"

    model_config = SettingsConfigDict(env_prefix="PIPEDREAM_", **ENV_CONFIG)

    @property
    def configured(self) -> bool:
        return bool(self.project_id and self.client_id and self.client_secret)


class Settings(BaseSettings):
    """Application settings sourced from environment variables and .env files."""

    google: GoogleOAuthSettings = Field(default_factory=GoogleOAuthSettings)
    pipedream: PipedreamSettings = Field(default_factory=PipedreamSettings)
    hubspot_access_token: Optional[str] = Field(default=None, alias="HUBSPOT_ACCESS_TOKEN")
    cron_secret: Optional[str] = Field(default=None, alias="CRON_SECRET")
    default_account_id: Optional[str] = Field(default=None, alias="GBP_DEFAULT_ACCOUNT_ID")
    default_location_id: Optional[str] = Field(default=None, alias="GBP_DEFAULT_LOCATION_ID")
    sync_user_id: Optional[str] = Field(default=None, alias="SYNC_USER_ID")
    http_timeout_seconds: float = Field(default=15.0, gt=0, alias="HTTP_TIMEOUT_SECONDS")
    scheduler_enabled: bool = Field(default=False, alias="SCHEDULER_ENABLED")
    stale_job_minutes: int = Field(default=60, gt=0, alias="SYNC_STALE_JOB_MINUTES")

    model_config = SettingsConfigDict(**ENV_CONFIG)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process settings, resolving them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
