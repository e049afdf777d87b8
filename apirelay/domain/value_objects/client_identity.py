"""
Client Identity Value Object
Identity triple used as the deny-list key: IP, user agent hash and
device fingerprint.
"""

import hashlib
from dataclasses import dataclass
from typing import Mapping, Optional


FINGERPRINT_HEADERS = ("user-agent", "accept-language", "accept-encoding", "connection")
FINGERPRINT_LENGTH = 32


def user_agent_hash(user_agent: Optional[str]) -> str:
    """SHA-256 hex digest of the user agent (empty string when absent)."""
    return hashlib.sha256((user_agent or "").encode("utf-8")).hexdigest()


def device_fingerprint(headers: Mapping[str, str]) -> str:
    """
    Derive a device fingerprint from a fixed set of request headers.

    The header values are joined with ``|`` in a fixed order and hashed,
    so the same client stack yields the same fingerprint even when its
    IP address rotates.

    Args:
        headers: Request headers; lookups are case-insensitive

    Returns:
        First 32 hex characters of the SHA-256 digest
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    canonical = "|".join(lowered.get(name, "") for name in FINGERPRINT_HEADERS)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


@dataclass(frozen=True)
class ClientIdentity:
    """
    Value object identifying a client for deny-list purposes.

    Attributes:
        ip: Resolved client IP address
        user_agent_hash: SHA-256 of the user agent, if known
        device_fingerprint: Header-derived fingerprint, if known
    """

    ip: Optional[str] = None
    user_agent_hash: Optional[str] = None
    device_fingerprint: Optional[str] = None

    @classmethod
    def from_headers(cls, ip: str, headers: Mapping[str, str]) -> "ClientIdentity":
        """Build the full identity triple for an inbound request."""
        lowered = {k.lower(): v for k, v in headers.items()}
        return cls(
            ip=ip,
            user_agent_hash=user_agent_hash(lowered.get("user-agent")),
            device_fingerprint=device_fingerprint(lowered),
        )

    @property
    def key(self) -> str:
        """Stable key for the identity triple (upsert conflict target)."""
        return "|".join(
            part or "" for part in (self.ip, self.user_agent_hash, self.device_fingerprint)
        )

    def is_empty(self) -> bool:
        return not (self.ip or self.user_agent_hash or self.device_fingerprint)

    def to_dict(self) -> dict:
        return {
            "ip": self.ip,
            "user_agent_hash": self.user_agent_hash,
            "device_fingerprint": self.device_fingerprint,
        }
