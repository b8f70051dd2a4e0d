"""Wallet ledger configuration using pydantic settings with nested sections."""

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseModel):
    recent_transactions_limit: int = Field(default=100, gt=0)
    max_commit_retries: int = Field(default=3, ge=1)
    storage_timeout_seconds: float = Field(default=2.0, gt=0)
    default_page_size: int = Field(default=50, gt=0)


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


class Settings(BaseSettings):
    """Top-level settings, read from WALLET_* environment variables or .env."""

    model_config = SettingsConfigDict(
        env_prefix="WALLET_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    project_name: str = "Merchant Coin Wallet Ledger"
    api_prefix: str = ""
    log_level: str = "INFO"

    ledger: LedgerSettings = LedgerSettings()
    server: ServerSettings = ServerSettings()


@lru_cache()
def get_settings() -> Settings:
    return Settings()
