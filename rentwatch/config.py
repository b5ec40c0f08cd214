"""Configuration management using Pydantic Settings"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="RENTWATCH_", extra="ignore"
    )

    # Database
    database_url: str = "sqlite:///./rentwatch.db"

    # Service
    service_name: str = "rentwatch"
    log_level: str = "INFO"

    # Calendar
    timezone: str = "Pacific/Auckland"
    region: Optional[str] = None
    holiday_data_path: Optional[str] = None  # defaults to the bundled NZ table
    exclude_summer_closedown: bool = True

    # Ledger
    max_ledger_periods: int = 1040  # 20 years of weekly rent

    # Regeneration queue
    queue_batch_size: int = 10
    queue_poll_interval_seconds: float = 2.0
    completion_timeout_seconds: float = 30.0
    queue_retention_days: int = 7

    # Settings-change throttling
    settings_change_max_attempts: int = 5
    settings_change_window_seconds: float = 60.0

    # Worker metrics endpoint (disabled when unset)
    metrics_port: Optional[int] = None


settings = Settings()
