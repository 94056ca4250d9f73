"""
Application settings.

Read from the environment or a .env file through pydantic-settings. The
IMPORT_* values bound the pipeline: batch size, lock waits, how long an
open session lives and what counts as a suspicious price.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the API, the import pipeline and notifications."""

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(default="http://localhost:54321")
    supabase_key: str = Field(default="", description="Anon key")
    supabase_service_key: Optional[str] = Field(
        None,
        description="Service role key; preferred for catalog writes when set",
    )

    # ===================
    # ACCESS
    # ===================
    api_key: Optional[str] = Field(
        None,
        description="Shared key expected in X-API-Key; no check when unset",
    )
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Back office frontends allowed to call the API",
    )

    # ===================
    # IMPORT PIPELINE
    # ===================
    import_max_rows: int = Field(default=5000, ge=1, le=100000)
    import_lock_timeout_seconds: float = Field(default=5.0, ge=0, le=120)
    import_session_ttl_days: int = Field(
        default=7,
        ge=1,
        le=90,
        description="Open sessions older than this expire on the next upload to their lane",
    )
    import_price_warning_threshold: float = Field(default=1000.0, ge=0)
    import_allow_updates: bool = Field(
        default=True,
        description="False turns a match on an active catalog entity into an error",
    )
    import_notify_telegram: bool = False

    # ===================
    # TELEGRAM
    # ===================
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    # ===================
    # RUNTIME
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
    )
    debug: bool = True
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
    )
    api_host: str = "0.0.0.0"
    api_port: int = Field(default=8000, ge=1000, le=65535)

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value):
        return value.upper() if isinstance(value, str) else value

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @property
    def telegram_enabled(self) -> bool:
        """Import events go to Telegram only when switched on and configured."""
        return self.import_notify_telegram and self.telegram_configured


@lru_cache()
def get_settings() -> Settings:
    """
    Get the cached settings.

    Call get_settings.cache_clear() to reload from the environment.
    """
    return Settings()


settings = get_settings()
