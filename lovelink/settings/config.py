"""Engine configuration loaded from environment variables."""

from functools import lru_cache
from typing import Optional

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lovelink.services.models import FREE_MOMENTS_LIMIT, TRIAL_DAYS


class Settings(BaseSettings):
    """Central configuration so the engine can be wired and overridden in tests."""

    app_name: str = Field(default="LoveLink Entitlements", alias="APP_NAME")
    debug: bool = Field(default=False, alias="DEBUG")

    supabase_url: Optional[AnyHttpUrl] = Field(default=None, alias="SUPABASE_URL")
    supabase_project_id: Optional[str] = Field(default=None, alias="SUPABASE_PROJECT_ID")
    supabase_service_role_key: Optional[str] = Field(default=None, alias="SUPABASE_SERVICE_ROLE_KEY")
    http_timeout_seconds: float = Field(default=10.0, alias="HTTP_TIMEOUT_SECONDS")

    profiles_table: str = Field(default="profiles", alias="PROFILES_TABLE")
    partnerships_table: str = Field(default="partnerships", alias="PARTNERSHIPS_TABLE")
    moments_table: str = Field(default="moments", alias="MOMENTS_TABLE")
    grant_premium_rpc: str = Field(default="grant_premium_from_iap", alias="GRANT_PREMIUM_RPC")

    trial_days: int = Field(default=TRIAL_DAYS, alias="TRIAL_DAYS")
    free_moments_limit: int = Field(default=FREE_MOMENTS_LIMIT, alias="FREE_MOMENTS_LIMIT")

    log_to_file: bool = Field(default=False, alias="LOG_TO_FILE")
    log_file_path: str = Field(default="logs/entitlements.log", alias="LOG_FILE_PATH")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("trial_days", "free_moments_limit")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("supabase_url", "supabase_project_id", "supabase_service_role_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        # blank env values count as unset
        if isinstance(value, str) and not value.strip():
            return None
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cache settings so BaseSettings does not re-parse the environment."""

    return Settings()
