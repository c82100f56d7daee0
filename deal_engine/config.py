"""
Engine configuration using Pydantic Settings.

Market defaults used by the calculators whenever an input omits a value.
"""

import os
import logging
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_env_file() -> str:
    """Determine which env file to use based on environment."""
    env = os.getenv("APP_ENV", "development")
    if env == "production":
        return ".env.production"
    return ".env.development"


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    app_name: str = "Healthcare Deal Engine"
    log_level: str = "INFO"
    app_env: str = "development"

    # Return analysis
    default_discount_rate: float = 0.10
    default_noi_growth_rate: float = 0.02
    default_exit_cap_rate: float = 0.12
    default_selling_costs: float = 0.02

    # Sale-leaseback
    default_slb_cap_rate: float = 0.075
    default_slb_yield: float = 0.085
    default_min_coverage: float = 1.40
    warning_coverage: float = 1.25

    # Lease buyout
    buyout_interest_rate: float = 0.08
    ebitdar_growth_rate: float = 0.02

    # Variable rate loans: assumed annual drift of the index
    variable_index_step: float = 0.0025

    model_config = SettingsConfigDict(
        env_file=get_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: str = None) -> None:
    """Apply the configured log level to the engine's loggers."""
    settings = get_settings()
    logging.getLogger("deal_engine").setLevel((level or settings.log_level).upper())
