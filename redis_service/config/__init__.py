"""
Configuration module: settings and logging.
"""

from redis_service.config.settings import Settings, get_settings, settings
from redis_service.config.logging import (
    get_logger,
    reset_logger,
    setup_logger,
    setup_logging,
)

__all__ = [
    # settings
    "Settings",
    "get_settings",
    "settings",
    # logging
    "get_logger",
    "reset_logger",
    "setup_logger",
    "setup_logging",
]
