"""Application configuration utilities."""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings derived from environment variables."""

    database_url: str = Field(
        default="sqlite:///./care_billing.db", alias="DATABASE_URL"
    )
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    redis_enabled_flag: bool = Field(default=True, alias="REDIS_ENABLED")
    redis_ca_cert_path: str = Field(
        default="certs/redis_ca.pem", alias="REDIS_CA_CERT_PATH"
    )
    celery_broker_url: str | None = Field(
        default=None, alias="CELERY_BROKER_URL"
    )
    celery_result_backend: str | None = Field(
        default=None, alias="CELERY_RESULT_BACKEND"
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    billing_vat_rate: Decimal = Field(
        default=Decimal("0.20"), alias="BILLING_VAT_RATE"
    )
    billing_default_credit_period_days: int = Field(
        default=30, alias="BILLING_DEFAULT_CREDIT_PERIOD_DAYS"
    )
    billing_default_bank_holiday_multiplier: Decimal = Field(
        default=Decimal("1.5"), alias="BILLING_DEFAULT_BANK_HOLIDAY_MULTIPLIER"
    )
    billing_round_up_past_hour: bool = Field(
        default=False, alias="BILLING_ROUND_UP_PAST_HOUR"
    )
    invoice_number_prefix: str = Field(default="INV", alias="INVOICE_NUMBER_PREFIX")

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    def get(self, key: str, default: object | None = None) -> object | None:
        """Dictionary-style access to configuration values."""

        return self.model_dump(by_alias=True).get(key, default)

    @property
    def broker_url(self) -> str:
        """Return the Celery broker URL, defaulting to Redis."""

        return self.celery_broker_url or self.redis_url

    @property
    def result_backend(self) -> str:
        """Return the Celery result backend, defaulting to the Redis URL."""

        if self.celery_result_backend:
            return self.celery_result_backend
        return self.redis_url

    @property
    def redis_enabled(self) -> bool:
        """Return ``True`` when Redis integrations should be used."""

        return self.redis_enabled_flag


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["Settings", "get_settings"]
