from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str = Field(alias="DATABASE_URL")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    cors_allow_origins: str = Field(
        default="http://localhost:5173,http://localhost:5174",
        alias="CORS_ALLOW_ORIGINS",
        description="Comma-separated list of allowed browser origins (no wildcards in production).",
    )
    dev_mode: bool = Field(default=True, alias="DEV_MODE")
    org_timezone: str = Field(default="Asia/Ho_Chi_Minh", alias="ORG_TIMEZONE")

    # Reschedule workflow
    reschedule_expiry_hours: float = Field(default=48.0, gt=0, alias="RESCHEDULE_EXPIRY_HOURS")
    reschedule_min_notice_hours: float = Field(default=0.0, ge=0, alias="RESCHEDULE_MIN_NOTICE_HOURS")
    reschedule_sweep_interval_seconds: float = Field(
        default=300.0,
        ge=0,
        alias="RESCHEDULE_SWEEP_INTERVAL_SECONDS",
        description="Period of the background expiry sweep; 0 disables it.",
    )
    reschedule_max_page_size: int = Field(default=100, gt=0, alias="RESCHEDULE_MAX_PAGE_SIZE")

    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
