"""Application configuration management."""

from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from order_sync_service.errors import ConfigurationError
from shared.constants import (
    CURSOR_OVERLAP_MINUTES,
    DEFAULT_LOOKBACK_DAYS,
    DEFAULT_TRANSIENT_ERROR_CODES,
    MAX_ORDER_DETAIL_BATCH_SIZE,
    MAX_ORDER_LIST_PAGE_SIZE,
    TOKEN_REFRESH_MARGIN_SECONDS,
)


@dataclass(frozen=True)
class MarketplaceConfig:
    """Marketplace credentials and client behaviour, built once at startup.

    Components receive this object explicitly instead of reading settings or
    the environment themselves.
    """

    partner_id: int
    partner_key: str
    api_host: str
    redirect_url: str = ""
    timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_backoff_seconds: float = 1.0
    transient_error_codes: frozenset[str] = frozenset(DEFAULT_TRANSIENT_ERROR_CODES)
    refresh_margin_seconds: int = TOKEN_REFRESH_MARGIN_SECONDS


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------
    app_name: str = "marketplace-order-sync"
    app_env: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Marketplace API Integration
    # -------------------------------------------------------------------------
    marketplace_partner_id: int = 0
    marketplace_partner_key: str = ""
    marketplace_api_host: str = "https://partner.shopeemobile.com"
    marketplace_redirect_url: str = ""
    marketplace_timeout: float = 30.0
    marketplace_max_retries: int = 3
    marketplace_retry_backoff_seconds: float = 1.0
    marketplace_transient_error_codes: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_TRANSIENT_ERROR_CODES)
    )

    @field_validator("marketplace_transient_error_codes", mode="before")
    @classmethod
    def parse_error_codes(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, str):
            return [code.strip() for code in v.split(",") if code.strip()]
        return v

    @field_validator("marketplace_api_host", "marketplace_partner_key", mode="before")
    @classmethod
    def strip_whitespace(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip()
        return v

    # -------------------------------------------------------------------------
    # PostgreSQL Database
    # -------------------------------------------------------------------------
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "order_sync"
    postgres_password: str = ""
    postgres_db: str = "order_sync"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_recycle: int = 1800

    @property
    def database_url(self) -> str:
        """Construct PostgreSQL connection URL."""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def database_url_sync(self) -> str:
        """Construct synchronous PostgreSQL connection URL (for Alembic)."""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # -------------------------------------------------------------------------
    # Redis
    # -------------------------------------------------------------------------
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0

    @property
    def redis_url(self) -> str:
        """Construct Redis connection URL."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # -------------------------------------------------------------------------
    # Celery
    # -------------------------------------------------------------------------
    celery_broker_url: str = ""
    celery_result_backend: str = ""

    @property
    def celery_broker(self) -> str:
        """Get Celery broker URL, defaulting to Redis URL."""
        return self.celery_broker_url or self.redis_url

    @property
    def celery_backend(self) -> str:
        """Get Celery result backend URL, defaulting to Redis URL."""
        return self.celery_result_backend or self.redis_url

    # -------------------------------------------------------------------------
    # Sync Settings
    # -------------------------------------------------------------------------
    ingestion_interval_minutes: int = 60
    normalization_interval_minutes: int = 5
    lookback_days: int = DEFAULT_LOOKBACK_DAYS
    cursor_overlap_minutes: int = Field(default=CURSOR_OVERLAP_MINUTES, ge=0)
    time_range_field: Literal["create_time", "update_time"] = "create_time"
    order_list_page_size: int = Field(default=MAX_ORDER_LIST_PAGE_SIZE, ge=1, le=MAX_ORDER_LIST_PAGE_SIZE)
    order_detail_batch_size: int = Field(
        default=MAX_ORDER_DETAIL_BATCH_SIZE, ge=1, le=MAX_ORDER_DETAIL_BATCH_SIZE
    )
    order_detail_optional_fields: str = (
        "buyer_username,pay_time,payment_method,total_amount,"
        "actual_shipping_fee,estimated_shipping_fee,recipient_address,"
        "shipping_carrier,item_list"
    )
    normalization_batch_size: int = 100
    token_refresh_margin_seconds: int = TOKEN_REFRESH_MARGIN_SECONDS
    max_concurrent_shops: int = 4
    sync_lock_ttl_seconds: int = 3300

    def marketplace_config(self) -> MarketplaceConfig:
        """Validate marketplace credentials and freeze them into a config struct."""
        missing = [
            name
            for name, value in (
                ("MARKETPLACE_PARTNER_ID", self.marketplace_partner_id),
                ("MARKETPLACE_PARTNER_KEY", self.marketplace_partner_key),
                ("MARKETPLACE_API_HOST", self.marketplace_api_host),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Missing marketplace configuration: {', '.join(missing)}"
            )
        return MarketplaceConfig(
            partner_id=self.marketplace_partner_id,
            partner_key=self.marketplace_partner_key,
            api_host=self.marketplace_api_host.rstrip("/"),
            redirect_url=self.marketplace_redirect_url,
            timeout_seconds=self.marketplace_timeout,
            max_retries=self.marketplace_max_retries,
            retry_backoff_seconds=self.marketplace_retry_backoff_seconds,
            transient_error_codes=frozenset(self.marketplace_transient_error_codes),
            refresh_margin_seconds=self.token_refresh_margin_seconds,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
