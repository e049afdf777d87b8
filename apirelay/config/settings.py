"""
API Relay Settings
Pydantic-based configuration with support for env vars and config files.
"""

from functools import lru_cache
from typing import Annotated, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class AppSettings(BaseSettings):
    """Application-level settings."""

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
    )

    name: str = Field(default="API Relay", alias="APP_NAME")
    env: str = Field(default="development", alias="APP_ENV")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=3000, alias="API_PORT")

    # Honour X-Forwarded-For when running behind a reverse proxy
    trust_proxy: bool = Field(default=True, alias="TRUST_PROXY")
    # Number of proxies in front of the relay that append to X-Forwarded-For
    trusted_proxy_hops: int = Field(default=1, ge=1, alias="TRUSTED_PROXY_HOPS")

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"


class SecuritySettings(BaseSettings):
    """Admin authentication settings."""

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
    )

    api_keys: Annotated[list[str], NoDecode] = Field(
        default=[],
        alias="API_KEYS",
    )

    @field_validator("api_keys", mode="before")
    @classmethod
    def parse_api_keys(cls, v):
        if isinstance(v, str):
            return [k.strip() for k in v.split(",") if k.strip()]
        return v


class RedisSettings(BaseSettings):
    """Persistent store settings."""

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
    )

    backend: str = Field(default="redis", alias="STORE_BACKEND")
    host: str = Field(default="localhost", alias="REDIS_HOST")
    port: int = Field(default=6379, alias="REDIS_PORT")
    password: Optional[str] = Field(default=None, alias="REDIS_PASSWORD")
    db: int = Field(default=0, alias="REDIS_DB")
    key_prefix: str = Field(default="apirelay", alias="REDIS_KEY_PREFIX")

    @field_validator("backend", mode="before")
    @classmethod
    def parse_backend(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
        if v not in ("redis", "memory"):
            raise ValueError("STORE_BACKEND must be 'redis' or 'memory'")
        return v


class BlacklistSettings(BaseSettings):
    """Deny-list and escalation settings."""

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
    )

    block_duration: int = Field(default=3600, alias="BLACKLIST_DURATION")
    auto_threshold: int = Field(default=10, alias="AUTO_BLACKLIST_THRESHOLD")
    auto_window: int = Field(default=300, alias="AUTO_BLACKLIST_WINDOW")
    sweep_interval: int = Field(default=300, alias="BLACKLIST_SWEEP_INTERVAL")
    decoy_delay_min: float = Field(default=5.0, alias="DECOY_DELAY_MIN")
    decoy_delay_max: float = Field(default=10.0, alias="DECOY_DELAY_MAX")


class RateLimitSettings(BaseSettings):
    """General API rate limit settings. The other tiers are fixed."""

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
    )

    window_minutes: int = Field(default=15, alias="RATE_LIMIT_WINDOW")
    max_requests: int = Field(default=100, alias="RATE_LIMIT_MAX")


class ProxySettings(BaseSettings):
    """Forwarding pipeline settings."""

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
    )

    whitelist_enabled: bool = Field(default=False, alias="WHITELIST_ENABLED")
    whitelist_cache_ttl: float = Field(default=60.0, alias="WHITELIST_CACHE_TTL")
    timeout: float = Field(default=30.0, alias="PROXY_TIMEOUT")
    max_redirects: int = Field(default=5, alias="PROXY_MAX_REDIRECTS")
    max_request_size_mb: float = Field(default=1.0, alias="MAX_REQUEST_SIZE")
    service_name: str = Field(default="API-Proxy-Service", alias="PROXY_SERVICE_NAME")


class Settings(BaseSettings):
    """
    Main settings class that aggregates all config sections.

    Usage:
        from apirelay.config import get_settings

        settings = get_settings()
        print(settings.app.name)
        print(settings.blacklist.auto_threshold)
    """

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=AppSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    blacklist: BlacklistSettings = Field(default_factory=BlacklistSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    proxy: ProxySettings = Field(default_factory=ProxySettings)

    def __init__(self, **data):
        super().__init__(**data)
        # Sub-settings read the same env source
        self.app = AppSettings()
        self.security = SecuritySettings()
        self.redis = RedisSettings()
        self.blacklist = BlacklistSettings()
        self.rate_limit = RateLimitSettings()
        self.proxy = ProxySettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: The application settings
    """
    return Settings()
