"""
API Relay Proxy Module

Admission control (deny-list, rate limits, URL and domain checks) in
front of an arbitrary-target HTTP forwarder.
"""

from apirelay.proxy.blacklist import BlacklistEngine, BlockDecision
from apirelay.proxy.config import GatewayConfig, RateLimitTier
from apirelay.proxy.forwarder import UpstreamForwarder
from apirelay.proxy.gateway import ApiRelayGateway, create_gateway_app
from apirelay.proxy.inspector import TrafficInspector
from apirelay.proxy.rate_limiter import RateLimiter
from apirelay.proxy.state import GatewayState
from apirelay.proxy.whitelist import WhitelistCache

__all__ = [
    "ApiRelayGateway",
    "BlacklistEngine",
    "BlockDecision",
    "GatewayConfig",
    "GatewayState",
    "RateLimiter",
    "RateLimitTier",
    "TrafficInspector",
    "UpstreamForwarder",
    "WhitelistCache",
    "create_gateway_app",
]
