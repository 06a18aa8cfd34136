"""
Application configuration.

Values come from environment variables (or a local ``.env`` file).
The listen port defaults to 3001.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = "sms-gateway-sim"

    # ========================================================================
    # SERVER
    # ========================================================================

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3001, alias="PORT")

    # ========================================================================
    # SIMULATION
    # ========================================================================

    simulation_policy: Literal["platform", "destination"] = Field(
        default="platform", alias="SIMULATION_POLICY"
    )
    disfavored_platform: str = Field(default="ios", alias="DISFAVORED_PLATFORM")
    rate_limit_sender: str = Field(default="RATE_LIMITED", alias="RATE_LIMIT_SENDER")
    rate_limit_retry_after: int = Field(default=30, alias="RATE_LIMIT_RETRY_AFTER")
    random_seed: Optional[int] = Field(default=None, alias="RANDOM_SEED")
    estimated_delivery_seconds: float = Field(default=5.0, alias="ESTIMATED_DELIVERY_SECONDS")

    # Optional real downstream to forward accepted messages to
    upstream_url: Optional[str] = Field(default=None, alias="UPSTREAM_URL")
    upstream_timeout: float = Field(default=5.0, alias="UPSTREAM_TIMEOUT")

    # ========================================================================
    # LOGGING
    # ========================================================================

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: Literal["json", "console"] = Field(default="json", alias="LOG_FORMAT")
    log_dir: Optional[str] = Field(default=None, alias="LOG_DIR")


@lru_cache
def get_settings() -> Settings:
    return Settings()
