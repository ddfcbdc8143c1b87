from decimal import Decimal
from functools import lru_cache
import os
from typing import List, Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    debug: bool = False
    project_name: str = "HaulBroker API"
    environment: str = "development"

    # Raw CORS origins string - read from env
    cors_origins_raw: Optional[str] = Field(
        default=None,
        alias="CORS_ORIGINS"
    )

    @computed_field
    @property
    def backend_cors_origins(self) -> List[str]:
        """Parse CORS_ORIGINS from environment variable (comma-separated string)."""
        raw = self.cors_origins_raw or os.environ.get("BACKEND_CORS_ORIGINS") or ""
        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    database_url: str  # Required - no default, must be set in .env
    sqlite_busy_timeout_seconds: int = 15

    # Carrier withdrawal fee, queued against the carrier's next payout
    withdrawal_fee: Decimal = Decimal("50.00")
    payout_currency: str = "BRL"

    # Regulatory price floor
    default_vehicle_axles: int = 5
    enable_scheduler: bool = True
    price_floor_recalc_interval_minutes: int = 60
    price_floor_batch_limit: int = 500

    # Outbound notifications. Without a webhook, notifications are only logged.
    notification_webhook_url: Optional[str] = None
    notification_timeout_seconds: float = 10.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
