"""Infrastructure Persistence - Data storage and caching."""

from apirelay.infrastructure.persistence.redis_client import (
    RedisClient,
    get_redis_client,
    init_redis,
    close_redis,
)
from apirelay.infrastructure.persistence.gateway_store import (
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
