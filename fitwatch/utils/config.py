"""
Configuration management for FitWatch.

Uses pydantic-settings to load configuration from environment variables
(prefixed with ``FITWATCH_``) and .env files.
"""

import sys
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_watch_dirs(platform: str = None) -> str:
    """Where Zwift and TrainerRoad save activities on this platform."""
    platform = platform or sys.platform
    if platform.startswith(("win", "darwin")):
        return "~/Documents/Zwift/Activities,~/Documents/TrainerRoad"
    return "~/Documents/Zwift/Activities,~/.local/share/Zwift/Activities"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Discovery Configuration
    watch_dirs: str = Field(default_factory=default_watch_dirs)
    file_suffix: str = ".fit"

    # Ledger Configuration
    ledger_path: Path = Path("~/.fitwatch/fitwatch.db")

    # Logging Configuration
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    # Delivery Configuration
    max_retries: int = 3
    backoff_base: float = 1.0  # seconds
    backoff_multiplier: float = 2.0
    backoff_cap: float = 30.0  # seconds
    retry_ceiling: int = 5  # failed deliveries at or above this are left alone by the sweep

    # Files are read once their size is non-zero and unchanged for one interval
    settle_interval: float = 0.5  # seconds
    settle_timeout: float = 10.0  # seconds

    # Intervals.icu Configuration
    intervals_enabled: bool = False
    intervals_athlete_id: Optional[str] = None
    intervals_api_key: Optional[str] = None
    intervals_base_url: str = "https://intervals.icu"
    http_timeout: float = 60.0

    model_config = SettingsConfigDict(
        env_prefix="FITWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def get_watch_dirs(self) -> list[Path]:
        """Parse watch directories into list of Paths."""
        return [
            Path(p.strip()).expanduser()
            for p in self.watch_dirs.split(',')
            if p.strip()
        ]

    def get_ledger_path(self) -> Path:
        """Ledger path with ``~`` expanded."""
        return self.ledger_path.expanduser()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
