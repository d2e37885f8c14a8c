import sys
from decimal import Decimal
from functools import lru_cache

from loguru import logger
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """settings loaded from SETTLEMENT_* environment variables (or .env)."""

    model_config = SettingsConfigDict(
        env_prefix="SETTLEMENT_",
        env_file=".env",
        extra="ignore",
    )

    database_dsn: str = "dbname=settlement user=settlement password=secret host=localhost port=5432"

    # absolute; amounts at or below this count as "no margin"
    profit_tolerance: Decimal = Field(Decimal("0.01"), ge=0)
    max_lineage_depth: int = Field(64, ge=1)

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def setup_logging(level: str | None = None) -> None:
    """swap loguru's default sink for a stderr sink at the configured level."""
    logger.remove()
    logger.add(sys.stderr, level=level or get_settings().log_level)
