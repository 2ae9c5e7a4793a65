"""Configuration management for Compendia.

This module uses Pydantic Settings to load and validate configuration from
environment variables and .env files. Configuration is loaded once and is
treated as immutable at runtime.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration settings.

    Settings are loaded from environment variables (prefixed ``COMPENDIA_``)
    and .env files. All configuration values are validated at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="COMPENDIA_",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Settings
    app_name: str = "Compendia"
    app_version: str = "0.1.0"
    environment: Literal["development", "production", "testing"] = "development"

    # Database Settings
    database_url: str = "sqlite+aiosqlite:///./compendia_data/compendia.db"
    db_echo: bool = False

    # Logging Settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "console"] = "json"

    # Compendium Settings
    compendium_cache_lifetime_seconds: int = Field(
        default=300,
        description="How long fetched pack documents stay in memory after their last access",
    )
    compendium_sweep_interval_seconds: int = Field(
        default=60,
        description="Interval of the periodic expired-entry sweep",
    )
    compendium_config_setting: str = Field(
        default="compendiumConfiguration",
        description="Settings-store key holding the per-pack {private, locked} entries",
    )
    world_package: str = Field(
        default="world",
        description="Package name of packs owned by the current world (unlocked by default)",
    )
    default_index_fields: list[str] = Field(default=["_id", "name"])

    @field_validator("default_index_fields", mode="before")
    @classmethod
    def parse_index_fields(cls, v: str | list[str]) -> list[str]:
        """Parse index fields from comma-separated string or list."""
        if isinstance(v, str):
            return [name.strip() for name in v.split(",") if name.strip()]
        return v

    @field_validator("compendium_cache_lifetime_seconds", "compendium_sweep_interval_seconds")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Cache lifetimes and sweep intervals must be positive."""
        if v <= 0:
            raise ValueError("must be a positive number of seconds")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == "testing"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Cached application settings instance.
    """
    return Settings()
