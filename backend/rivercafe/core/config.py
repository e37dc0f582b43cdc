"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly.
"""

from functools import lru_cache
from typing import List, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECRET_KEY = "change-me-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database
    database_url: str = "sqlite:///./rivercafe.db"

    # Security
    secret_key: str = DEFAULT_SECRET_KEY
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 480  # one school day

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    sql_echo: bool = False
    # Serialize SQLite writers at BEGIN; useful with several canteen terminals
    sqlite_begin_immediate: bool = False

    # API
    api_prefix: str = "/api"

    # Rate limiting
    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"

    # Canteen clock. Ordering windows without their own timezone and the
    # collection-board date filter use this zone.
    timezone: str = "Africa/Harare"

    # ==========================================================================
    # Orders
    # ==========================================================================
    order_code_prefix: str = "RC-"
    special_order_code_prefix: str = "SP-"
    pickup_code_length: int = 4
    external_code_ttl_minutes: int = 60
    # Categories whose items are handed over straight from the shelf
    auto_prepare_categories: str = "tuck shop,icecream"
    # Compare-and-swap attempts for prepare/unprepare before giving up
    prepare_max_attempts: int = 3
    prepare_candidate_limit: int = 200

    # ==========================================================================
    # Ledger
    # ==========================================================================
    # Disable when the database cannot run balance update, transaction
    # insert and audit insert in one transaction.
    ledger_transactions_enabled: bool = True
    # Largest single amount accepted from a client, in cents
    max_amount_cents: int = 100_000_000
    transactions_page_size: int = 50
    transactions_page_limit: int = 200

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if v == DEFAULT_SECRET_KEY:
            import warnings
            warnings.warn(
                "Using default SECRET_KEY is insecure! Set SECRET_KEY environment variable.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @field_validator("prepare_max_attempts")
    @classmethod
    def validate_prepare_attempts(cls, v: int) -> int:
        # A lost race must be retried against the next candidate at least once
        if v < 2:
            raise ValueError("prepare_max_attempts must be at least 2")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Refuse insecure settings outside debug mode."""
        if not self.debug:
            if self.secret_key == DEFAULT_SECRET_KEY:
                raise ValueError(
                    "FATAL: Cannot start in production mode with default SECRET_KEY. "
                    "Set a secure SECRET_KEY environment variable (minimum 32 characters)."
                )
            if len(self.secret_key) < 32:
                raise ValueError(
                    f"FATAL: SECRET_KEY must be at least 32 characters in production mode "
                    f"(current length: {len(self.secret_key)})."
                )
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def auto_prepare_category_set(self) -> set[str]:
        return {
            c.strip().lower() for c in self.auto_prepare_categories.split(",") if c.strip()
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
