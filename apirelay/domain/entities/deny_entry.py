"""
Deny Entry Entity
A record blocking a client identity, permanently or until an expiry.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from apirelay.domain.value_objects.client_identity import ClientIdentity


SYSTEM_OPERATOR = "system"


class DenyStatus(str, Enum):
    """Derived lifecycle status of a deny entry."""

    PERMANENT = "permanent"
    TEMPORARY = "temporary"
    EXPIRED = "expired"


def utc_from_timestamp(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


@dataclass
class DenyEntry:
    """
    Entity representing a deny-list entry.

    ``expires_at`` of ``None`` means the entry is permanent. Entries
    created by the escalator carry ``added_by == "system"``.
    """

    identity: ClientIdentity
    reason: str
    added_by: str = SYSTEM_OPERATOR
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: Optional[datetime] = None
    id: Optional[int] = None

    @classmethod
    def create(
        cls,
        identity: ClientIdentity,
        reason: str,
        added_by: str = SYSTEM_OPERATOR,
        duration_seconds: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> "DenyEntry":
        """
        Create a new entry.

        Args:
            identity: Client identity triple to block
            reason: Human readable reason
            added_by: "system" or an operator id
            duration_seconds: Lifetime of a temporary entry; None for permanent
            now: Creation time (defaults to the current UTC time)
        """
        created_at = now or datetime.now(timezone.utc)
        expires_at = None
        if duration_seconds is not None:
            expires_at = created_at + timedelta(seconds=duration_seconds)
        return cls(
            identity=identity,
            reason=reason,
            added_by=added_by,
            created_at=created_at,
            expires_at=expires_at,
        )

    @property
    def is_permanent(self) -> bool:
        return self.expires_at is None

    @property
    def is_automatic(self) -> bool:
        return self.added_by == SYSTEM_OPERATOR

    def is_active(self, now: datetime) -> bool:
        """Check whether the entry still blocks at ``now``."""
        return self.expires_at is None or self.expires_at > now

    def status(self, now: datetime) -> DenyStatus:
        if self.expires_at is None:
            return DenyStatus.PERMANENT
        if self.expires_at > now:
            return DenyStatus.TEMPORARY
        return DenyStatus.EXPIRED

    def with_id(self, entry_id: int) -> "DenyEntry":
        return replace(self, id=entry_id)

    def to_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        data = {
            "id": self.id,
            "ip_address": self.identity.ip,
            "user_agent_hash": self.identity.user_agent_hash,
            "device_fingerprint": self.identity.device_fingerprint,
            "reason": self.reason,
            "added_by": self.added_by,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }
        if now is not None:
            data["status"] = self.status(now).value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DenyEntry":
        """Create from a dictionary produced by ``to_dict``."""
        expires_at = data.get("expires_at")
        entry_id = data.get("id")
        return cls(
            id=int(entry_id) if entry_id not in (None, "") else None,
            identity=ClientIdentity(
                ip=data.get("ip_address") or None,
                user_agent_hash=data.get("user_agent_hash") or None,
                device_fingerprint=data.get("device_fingerprint") or None,
            ),
            reason=data.get("reason") or "",
            added_by=data.get("added_by") or SYSTEM_OPERATOR,
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )
