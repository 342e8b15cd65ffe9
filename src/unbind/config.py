"""Configuration for unbind."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from unbind.models import PortFilter

MIN_SCAN_INTERVAL_MS = 100


class Settings(BaseSettings):
    """Application settings, read from ``UNBIND_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="UNBIND_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Scanning
    scan_interval_ms: int = 2000

    # Storage
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".unbind")
    database_url: str = ""

    # Notifications
    notifications_enabled: bool = True

    # Logging
    log_level: str = "INFO"
    log_file: Path | None = None

    # View filter
    min_port: int | None = None
    max_port: int | None = None
    process_name: str = ""

    @field_validator("scan_interval_ms")
    @classmethod
    def clamp_interval(cls, value: int) -> int:
        return max(MIN_SCAN_INTERVAL_MS, value)

    @field_validator("log_level")
    @classmethod
    def normalize_level(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def default_database_url(self) -> "Settings":
        if not self.database_url:
            self.database_url = f"sqlite:///{self.data_dir / 'unbind.db'}"
        return self

    @property
    def port_filter(self) -> PortFilter:
        return PortFilter(
            min_port=self.min_port,
            max_port=self.max_port,
            process_name=self.process_name,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
