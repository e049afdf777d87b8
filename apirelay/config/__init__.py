"""
API Relay Configuration Module
Centralized configuration management using pydantic-settings.
"""

from apirelay.config.settings import (
    Settings,
    AppSettings,
    SecuritySettings,
    RedisSettings,
    BlacklistSettings,
    RateLimitSettings,
    ProxySettings,
    get_settings,
)
from apirelay.config.logging_config import configure_logging

__all__ = [
    "Settings",
    "AppSettings",
    "SecuritySettings",
    "RedisSettings",
    "BlacklistSettings",
    "RateLimitSettings",
    "ProxySettings",
    "get_settings",
    "configure_logging",
]
