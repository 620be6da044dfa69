"""
Service settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.

Every value can be overridden with a ``REDIS_SERVICE_`` prefixed variable,
e.g. ``REDIS_SERVICE_DEFAULT_PORT=6380``.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings with defaults for development."""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_SERVICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Single-node connection defaults
    default_host: str = "127.0.0.1"
    default_port: int = 6379
    default_db: int = 0

    # Client behaviour defaults
    enable_auto_pipelining: bool = False
    show_friendly_error_stack: bool = True
    enable_offline_queue: bool = True

    # Timeouts in seconds, handed straight to the driver
    connect_timeout: float = 10.0
    command_timeout: float | None = None

    # Cluster defaults
    cluster_scale_reads: str = "slave"
    cluster_max_redirections: int = 16

    # Default retry strategy: linear backoff, capped
    retry_delay_step_ms: int = 100
    retry_max_delay_ms: int = 2000

    # Health checks
    health_check_timeout: float = 3.0

    # Environment
    environment: str = "development"
    debug: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
