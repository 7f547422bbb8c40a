from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./engage.db"
    database_echo: bool = False

    # Admin routes (session auth lives in the admin backend; this key guards server-to-server calls)
    admin_api_key: str = ""

    # Application URLs
    frontend_url: str = "http://localhost:5173"
    api_base_url: str = "http://localhost:8000"

    # Coupon codes
    coupon_code_length: int = 8
    coupon_code_max_attempts: int = 5

    # Nearby store resolution
    nearby_store_default_limit: int = 3
    nearby_store_max_limit: int = 50

    # LINE Messaging API
    line_channel_access_token: str | None = None
    line_api_base_url: str = "https://api.line.me/v2/bot"
    line_push_timeout_seconds: float = 10.0
    notification_muted_categories: list[str] = Field(default_factory=list)

    @field_validator("notification_muted_categories", mode="before")
    @classmethod
    def _parse_category_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    # Expiry housekeeping
    expiry_sweep_enabled: bool = False
    expiry_sweep_interval_seconds: int = 300
    expiry_sweep_batch_size: int = 500


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
