from functools import lru_cache
import os
from typing import List, Optional

from pydantic import Field, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False
    project_name: str = "Creator Commission API"
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
        raw = self.cors_origins_raw
        if not raw:
            raw = os.environ.get("CORS_ORIGINS") or ""

        if not raw or not raw.strip():
            return []

        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    database_url: str = "sqlite+aiosqlite:///./commission.db"

    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"

    # Schedule generation
    commission_max_days: int = 365  # Matches the admin UI limit
    commission_max_total_amount: int = 2**63 - 1  # BIGINT ceiling
    commission_schedule_start_offset_days: int = 1  # 1 = first installment the day after issuance
    commission_weight_min_permille: int = 500
    commission_weight_max_permille: int = 1500

    # Disbursement worker
    scheduler_enabled: bool = True
    disbursement_interval_minutes: int = 5
    disbursement_batch_size: int = 100
    disbursement_max_attempts: int = 5
    disbursement_backoff_base_seconds: int = 60
    disbursement_backoff_max_seconds: int = 3600

    # Stale claim recovery
    stale_claim_timeout_minutes: int = 15
    stale_claim_sweep_interval_minutes: int = 5
    stale_claim_alert_threshold: int = 3

    # Wallet ledger (system of record for creator balances)
    wallet_ledger_api_url: str = "http://localhost:8081"
    wallet_ledger_api_key: Optional[str] = None
    wallet_ledger_timeout_seconds: float = 30.0

    @model_validator(mode="after")
    def _check_disbursement_limits(self) -> "Settings":
        if self.wallet_ledger_timeout_seconds >= self.stale_claim_timeout_minutes * 60:
            raise ValueError(
                "wallet_ledger_timeout_seconds must be shorter than the stale claim timeout"
            )
        if not 1 <= self.commission_max_total_amount <= 2**63 - 1:
            raise ValueError("commission_max_total_amount must fit a BIGINT column")
        if self.commission_weight_min_permille < 1:
            raise ValueError("commission_weight_min_permille must be positive")
        if self.commission_weight_max_permille < self.commission_weight_min_permille:
            raise ValueError("commission weight range is empty")
        if self.disbursement_max_attempts < 1:
            raise ValueError("disbursement_max_attempts must be at least 1")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
