"""
Gateway Configuration

Configuration for the admission and forwarding gateway, derived from
the application settings.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from apirelay.config.settings import Settings, get_settings


# Inbound headers copied onto the outbound request
FORWARDED_REQUEST_HEADERS = (
    "accept",
    "accept-language",
    "content-type",
    "user-agent",
    "referer",
)

# Upstream headers copied back to the caller
RELAYED_RESPONSE_HEADERS = (
    "content-type",
    "content-length",
    "cache-control",
    "expires",
    "last-modified",
    "etag",
)

ALLOWED_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")
BODY_METHODS = ("POST", "PUT", "PATCH")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


@dataclass
class RateLimitTier:
    """A named fixed-window limit."""

    name: str
    window_seconds: float
    max_requests: int


def default_tiers(api_window_seconds: float = 15 * 60, api_max: int = 100) -> List[RateLimitTier]:
    return [
        RateLimitTier("api", api_window_seconds, api_max),
        RateLimitTier("login", 15 * 60, 5),
        RateLimitTier("feedback", 60 * 60, 10),
        RateLimitTier("strict", 60, 30),
        RateLimitTier("burst", 10, 10),
    ]


@dataclass
class GatewayConfig:
    """
    Configuration for the API relay gateway.

    Attributes:
        whitelist_enabled: Enforce the domain allow-list
        whitelist_ttl: Seconds a whitelist snapshot stays fresh
        block_duration: Lifetime of an escalated temporary block (seconds)
        failure_threshold: Failures within the window that trigger a block
        failure_window: Sliding window for failure counting (seconds)
        sweep_interval: Period of the expiry sweep (seconds)
        decoy_delay_min / decoy_delay_max: Band of the permanent-block decoy delay
        request_timeout: Hard timeout for the forwarded call
        max_redirects: Redirects followed by the forwarded call
        max_request_size: Largest accepted request body in bytes
        rate_limit_tiers: Independently configured limiter tiers
        trust_proxy: Resolve the client from X-Forwarded-For
        proxy_hops: Trusted proxies appending to X-Forwarded-For; the client
            is the entry this many hops from the right
        expose_errors: Include exception detail in 500 responses
        service_name: Value of the X-Proxy-Service response header
        api_keys: Keys accepted on the admin endpoints
    """

    whitelist_enabled: bool = False
    whitelist_ttl: float = 60.0

    block_duration: float = 3600.0
    failure_threshold: int = 10
    failure_window: float = 300.0
    sweep_interval: float = 300.0
    decoy_delay_min: float = 5.0
    decoy_delay_max: float = 10.0

    request_timeout: float = 30.0
    max_redirects: int = 5
    max_request_size: int = 1024 * 1024

    rate_limit_tiers: List[RateLimitTier] = field(default_factory=default_tiers)

    trust_proxy: bool = True
    proxy_hops: int = 1
    expose_errors: bool = False
    service_name: str = "API-Proxy-Service"
    api_keys: List[str] = field(default_factory=list)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "GatewayConfig":
        """Create configuration from application settings."""
        settings = settings or get_settings()
        return cls(
            whitelist_enabled=settings.proxy.whitelist_enabled,
            whitelist_ttl=settings.proxy.whitelist_cache_ttl,
            block_duration=settings.blacklist.block_duration,
            failure_threshold=settings.blacklist.auto_threshold,
            failure_window=settings.blacklist.auto_window,
            sweep_interval=settings.blacklist.sweep_interval,
            decoy_delay_min=settings.blacklist.decoy_delay_min,
            decoy_delay_max=settings.blacklist.decoy_delay_max,
            request_timeout=settings.proxy.timeout,
            max_redirects=settings.proxy.max_redirects,
            max_request_size=int(settings.proxy.max_request_size_mb * 1024 * 1024),
            rate_limit_tiers=default_tiers(
                api_window_seconds=settings.rate_limit.window_minutes * 60,
                api_max=settings.rate_limit.max_requests,
            ),
            trust_proxy=settings.app.trust_proxy,
            proxy_hops=settings.app.trusted_proxy_hops,
            expose_errors=not settings.app.is_production,
            service_name=settings.proxy.service_name,
            api_keys=list(settings.security.api_keys),
        )

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if self.failure_threshold < 1:
            errors.append("Failure threshold must be at least 1")

        if self.decoy_delay_min < 0 or self.decoy_delay_max < self.decoy_delay_min:
            errors.append("Decoy delay band must satisfy 0 <= min <= max")

        if self.proxy_hops < 1:
            errors.append("Trusted proxy hops must be at least 1")

        if self.request_timeout <= 0:
            errors.append("Request timeout must be positive")

        for tier in self.rate_limit_tiers:
            if tier.window_seconds <= 0 or tier.max_requests < 1:
                errors.append(f"Rate limit tier '{tier.name}' is invalid")

        return errors
