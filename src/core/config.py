from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Ignore unrelated env keys so local/dev .env can include optional integrations.
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Performance Backend"
    api_prefix: str = "/api/v1"
    cors_allow_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    supabase_url: str = Field(..., alias="SUPABASE_URL")
    supabase_service_role_key: Optional[str] = Field(
        default=None, alias="SUPABASE_SERVICE_ROLE_KEY"
    )
    supabase_anon_key: Optional[str] = Field(default=None, alias="SUPABASE_ANON_KEY")

    reporting_currency: str = Field(default="NIS", alias="REPORTING_CURRENCY")
    fx_reporting_rates: str = Field(default="USD:3.7,EUR:4.0,GBP:4.7", alias="FX_REPORTING_RATES")

    source_timeout_seconds: float = Field(default=15.0, alias="SOURCE_TIMEOUT_SECONDS")
    source_max_concurrency: int = Field(default=8, alias="SOURCE_MAX_CONCURRENCY")
    report_deadline_seconds: float = Field(default=45.0, alias="REPORT_DEADLINE_SECONDS")
    report_cache_ttl_seconds: int = Field(default=0, alias="REPORT_CACHE_TTL_SECONDS")

    signed_stage_id: int = Field(default=60, alias="SIGNED_STAGE_ID")
    scheduling_stage_id: int = Field(default=20, alias="SCHEDULING_STAGE_ID")
    handling_stage_id: int = Field(default=105, alias="HANDLING_STAGE_ID")


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_cors_origins() -> list[str]:
    settings = get_settings()
    return [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
