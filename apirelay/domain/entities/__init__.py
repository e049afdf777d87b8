"""Domain Entities - Core business objects."""

from apirelay.domain.entities.deny_entry import (
    DenyEntry,
    DenyStatus,
    SYSTEM_OPERATOR,
    utc_from_timestamp,
)

__all__ = [
    "DenyEntry",
    "DenyStatus",
    "SYSTEM_OPERATOR",
    "utc_from_timestamp",
]
