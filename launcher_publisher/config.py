"""
Configuration management for Launcher Publisher.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = Field(default="Launcher Publisher", env="APP_NAME")
    debug: bool = Field(default=False, env="DEBUG")
    environment: str = Field(default="development", env="ENVIRONMENT")

    # API
    api_host: str = Field(default="0.0.0.0", env="API_HOST")
    api_port: int = Field(default=8000, env="API_PORT")
    api_workers: int = Field(default=1, env="API_WORKERS")

    # Database
    database_url: str = Field(
        default="sqlite:///./launcher_publisher.db", env="DATABASE_URL"
    )

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")

    # Object storage
    storage_uri: str = Field(
        default="file://./storage",
        env="STORAGE_URI",
        description="Object store location. Supported: file://<path>, memory://",
    )

    # Build pipeline
    source_root: str = Field(default="BuildSources", env="SOURCE_ROOT")
    default_jvm_args: str = Field(default="-Xms1024M -Xmx2048M", env="DEFAULT_JVM_ARGS")
    default_game_args: str = Field(default="", env="DEFAULT_GAME_ARGS")
    upload_workers: int = Field(default=4, ge=1, le=64, env="UPLOAD_WORKERS")
    stale_build_seconds: int = Field(default=3600, ge=60, env="STALE_BUILD_SECONDS")
    error_message_max_length: int = Field(default=2000, ge=64, env="ERROR_MESSAGE_MAX_LENGTH")

    # History retention
    build_history_max: int = Field(default=50, ge=1, env="BUILD_HISTORY_MAX")
    preflight_history_max: int = Field(default=200, ge=1, env="PREFLIGHT_HISTORY_MAX")

    # Optional human label for the instance (shown by the CLI)
    instance_label: Optional[str] = Field(default=None, env="INSTANCE_LABEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
