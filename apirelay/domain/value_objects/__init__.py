"""Domain Value Objects - Immutable domain concepts."""

from apirelay.domain.value_objects.client_identity import (
    ClientIdentity,
    device_fingerprint,
    user_agent_hash,
)

__all__ = [
    "ClientIdentity",
    "device_fingerprint",
    "user_agent_hash",
]
