"""
Configuration management using environment variables.
Handles storage, scheduling, fetching and notification settings with validation and defaults.
"""

from typing import Optional
from pathlib import Path

from pydantic import validator
from pydantic_settings import BaseSettings


class MonitorConfig(BaseSettings):
    """
    Configuration class for the app store monitor.
    Uses pydantic BaseSettings for environment variable management.
    """

    # Storage Configuration
    storage_backend: str = "memory"
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_database: str = "app_store_monitor"

    # Scheduler Configuration
    tick_seconds: int = 60
    min_trigger_spacing_seconds: float = 30.0
    min_interval_seconds: float = 1.0
    timezone: str = "UTC"

    # Fetcher Configuration
    request_timeout: float = 15.0
    rate_limit_per_second: float = 2.0

    # Notification Configuration
    webhook_url: Optional[str] = None
    notifications_enabled: bool = True
    notify_timeout: float = 10.0

    # Logging Configuration
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = "logs/monitor.log"
    debug: bool = False

    @validator('storage_backend')
    def validate_storage_backend(cls, v):
        """Ensure storage backend is supported."""
        valid_backends = ['memory', 'mongodb']
        if v.lower() not in valid_backends:
            raise ValueError(f'storage_backend must be one of: {valid_backends}')
        return v.lower()

    @validator('tick_seconds')
    def validate_tick(cls, v):
        """Ensure the scheduler tick is at least one second."""
        if v < 1:
            raise ValueError('tick_seconds must be at least 1')
        return v

    @validator('min_trigger_spacing_seconds')
    def validate_spacing(cls, v):
        if v < 0:
            raise ValueError('min_trigger_spacing_seconds cannot be negative')
        return v

    @validator('min_interval_seconds')
    def validate_min_interval(cls, v):
        if v <= 0:
            raise ValueError('min_interval_seconds must be positive')
        return v

    @validator('request_timeout', 'notify_timeout')
    def validate_timeout(cls, v):
        """Ensure timeout is reasonable."""
        if v < 1 or v > 120:
            raise ValueError('timeouts must be between 1 and 120 seconds')
        return v

    @validator('rate_limit_per_second')
    def validate_rate_limit(cls, v):
        """Ensure rate limit is reasonable."""
        if v < 0.1 or v > 10:
            raise ValueError('rate_limit_per_second must be between 0.1 and 10')
        return v

    @validator('log_level')
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of: {valid_levels}')
        return v.upper()

    @validator('log_format')
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ['json', 'console']
        if v.lower() not in valid_formats:
            raise ValueError(f'log_format must be one of: {valid_formats}')
        return v.lower()

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Ignore extra fields from .env

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path as Path object."""
        if self.log_file:
            return Path(self.log_file)
        return None

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug


# Global configuration instance, read by entry points only
config = MonitorConfig()
