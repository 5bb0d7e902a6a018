"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file and override existing env vars
load_dotenv(override=True)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Log streaming channel
    stream_outbound_queue_size: int = Field(default=100, ge=1)
    stream_overflow_policy: Literal["drop_oldest", "reject"] = "drop_oldest"
    stream_shard_count: int = Field(default=16, ge=1)
    stream_heartbeat_interval: float = Field(default=30.0, gt=0)
    stream_send_timeout: float = Field(default=5.0, gt=0)
    stream_max_connections: int = Field(default=10_000, ge=1)

    # Mock builds (development only)
    mock_builds: bool = False
    mock_build_step_delay: float = 0.2

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    log_directory: str = "logs"
    log_file_name: str = "gitship.log"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
