"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Upstream data source (used by the HTTP fetch adapter)
    api_base_url: Optional[str] = None
    request_timeout_seconds: float = 30.0

    # Retry policy
    # Backoff is one of "immediate", "fixed" or "exponential"
    retry_max_attempts: int = 3
    retry_backoff: str = "exponential"
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0

    # Refresh behaviour
    # Focus regain does not trigger refetches unless explicitly enabled
    refetch_on_focus: bool = False

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
