"""Configuration system using pydantic-settings with environment variable loading."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExchangeSettings(BaseSettings):
    """Bybit public market data connection settings."""

    model_config = SettingsConfigDict(env_prefix="BYBIT_")

    testnet: bool = False
    category: str = "linear"
    request_timeout_seconds: float = 10.0


class ScannerSettings(BaseSettings):
    """Volume refresh cycle parameters."""

    model_config = SettingsConfigDict(env_prefix="SCANNER_")

    refresh_interval: int = 300  # seconds between refresh cycles
    timeframes: list[Literal["5m", "15m", "1h", "4h", "1d"]] = ["5m", "15m", "1h", "4h", "1d"]
    quote_suffix: str = "USDT"
    batch_size: int = Field(default=50, ge=1)  # concurrent kline requests per batch
    batch_pause_seconds: float = 0.05
    profile: Literal["volume", "momentum", "pressure"] = "momentum"


class HistorySettings(BaseSettings):
    """Daily top-volume history used to build the exclusion set.

    Only active when the selected bucket profile tracks history.
    All fields configurable via HISTORY_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="HISTORY_")

    retention_days: int = Field(default=7, ge=1)
    top_k: int = Field(default=20, ge=1)  # symbols recorded per day
    min_appearances: int = Field(default=5, ge=1)  # days in top-K before exclusion
    backfill_anchor_hour: int = Field(default=12, ge=0, le=23)  # UTC anchor for backfilled days
    backfill_on_start: bool = True


class DashboardSettings(BaseSettings):
    """Read-only HTTP API server configuration."""

    model_config = SettingsConfigDict(env_prefix="DASHBOARD_")

    host: str = "0.0.0.0"
    port: int = 8080
    enabled: bool = True


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    exchange: ExchangeSettings = ExchangeSettings()
    scanner: ScannerSettings = ScannerSettings()
    history: HistorySettings = HistorySettings()
    dashboard: DashboardSettings = DashboardSettings()
