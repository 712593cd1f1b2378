from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from feeledger.core.enums import SupersededBalancePolicy


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # What happens to unpaid balances on an assignment that is being replaced.
    superseded_balance_policy: SupersededBalancePolicy = Field(
        SupersededBalancePolicy.AUTO_WAIVE, alias="SUPERSEDED_BALANCE_POLICY"
    )
    settlement_waiver_reason: str = Field("Superseded by reassignment", alias="SETTLEMENT_WAIVER_REASON")

    bulk_assign_concurrency: int = Field(8, alias="BULK_ASSIGN_CONCURRENCY", ge=1)
    bulk_assign_member_timeout_seconds: Optional[float] = Field(30.0, alias="BULK_ASSIGN_MEMBER_TIMEOUT_SECONDS")

    currency_symbol: str = Field("₹", alias="CURRENCY_SYMBOL")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True


settings = Settings()
