"""
Configuration management for Doomsday Watcher.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Doomsday Watcher")
    debug: bool = Field(default=False)

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_workers: int = Field(default=1)

    # Database
    database_url: str = Field(default="sqlite:///./doomsday_watcher.db")
    db_connect_timeout_seconds: int = Field(default=10)
    db_statement_timeout_ms: int = Field(default=15000)

    # Logging
    log_level: str = Field(default="INFO")

    # Workflow engine
    kestra_url: str = Field(default="http://localhost:8080")
    kestra_user: Optional[str] = Field(default=None)
    kestra_password: Optional[str] = Field(default=None)
    kestra_namespace: str = Field(default="doomsday.assemble")
    kill_flow_id: str = Field(default="w4_kill_zombie")
    http_timeout_seconds: float = Field(default=10.0)

    # Execution stream
    stream_poll_interval: float = Field(default=2.0)
    stream_terminal_resend_delay: float = Field(default=0.5)
    stream_max_consecutive_failures: int = Field(default=3)
    stream_max_seconds: float = Field(
        default=3600.0,
        description="Upper bound on a single stream before it is surfaced as a timeout.",
    )

    # Lifecycle
    bulk_batch_ceiling: int = Field(default=100)
    kill_score_threshold: int = Field(default=70)
    credential_cache_ttl_seconds: int = Field(default=3600)


@lru_cache
def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
