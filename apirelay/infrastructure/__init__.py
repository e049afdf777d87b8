"""
API Relay Infrastructure Layer
External services and persistence.
"""

from apirelay.infrastructure.persistence import (
    RedisClient,
    get_redis_client,
    init_redis,
    close_redis,
    GatewayStore,
    InMemoryGatewayStore,
    RedisGatewayStore,
)

__all__ = [
    "RedisClient",
    "get_redis_client",
    "init_redis",
    "close_redis",
    "GatewayStore",
    "InMemoryGatewayStore",
    "RedisGatewayStore",
]
