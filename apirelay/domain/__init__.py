"""
API Relay Domain Layer
Deny-list entities and client identity value objects.
"""

from apirelay.domain.entities import DenyEntry, DenyStatus, SYSTEM_OPERATOR
from apirelay.domain.value_objects import (
    ClientIdentity,
    device_fingerprint,
    user_agent_hash,
)

__all__ = [
    # Entities
    "DenyEntry",
    "DenyStatus",
    "SYSTEM_OPERATOR",
    # Value Objects
    "ClientIdentity",
    "device_fingerprint",
    "user_agent_hash",
]
