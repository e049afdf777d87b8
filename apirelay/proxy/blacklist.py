"""
Blacklist Engine

Tri-tier deny-list (in-process temporary cache, persisted temporary
entries, persisted permanent entries) plus the failure-rate escalator
that promotes misbehaving clients to a temporary block.
"""

import asyncio
import math
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

import structlog

from apirelay.domain.entities.deny_entry import (
    SYSTEM_OPERATOR,
    DenyEntry,
    utc_from_timestamp,
)
from apirelay.domain.value_objects.client_identity import ClientIdentity
from apirelay.infrastructure.persistence.gateway_store import GatewayStore

logger = structlog.get_logger(__name__)


@dataclass
class BlockDecision:
    """Outcome of a deny-list check."""

    blocked: bool = False
    reason: Optional[str] = None
    temporary: bool = False
    expires_at: Optional[datetime] = None
    entry_id: Optional[int] = None
    source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "blocked": self.blocked,
            "reason": self.reason,
            "temporary": self.temporary,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "entry_id": self.entry_id,
            "source": self.source,
        }


@dataclass
class EscalationResult:
    """Outcome of recording a failure."""

    blocked: bool
    failure_count: int
    entry: Optional[DenyEntry] = None


class BlacklistEngine:
    """
    Deny-list checks, operator mutations and automatic escalation.

    The in-process cache holds temporary entries keyed by IP so the hot
    path avoids a store round-trip. Mutations always hit the store first
    and then update or evict the cache.
    """

    def __init__(
        self,
        store: GatewayStore,
        block_duration: float = 3600.0,
        failure_threshold: int = 10,
        failure_window: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.block_duration = block_duration
        self.failure_threshold = failure_threshold
        self.failure_window = failure_window
        self._clock = clock

        self._temp_cache: Dict[str, DenyEntry] = {}
        self._failures: Dict[str, List[float]] = {}
        self._escalating: Set[str] = set()

        self._cache_lock = asyncio.Lock()
        self._failure_lock = asyncio.Lock()

        # Statistics
        self._checks = 0
        self._blocked = 0
        self._escalations = 0

        logger.info(
            "blacklist_engine_initialized",
            threshold=failure_threshold,
            window=failure_window,
            duration=block_duration,
        )

    def now(self) -> datetime:
        return utc_from_timestamp(self._clock())

    # =========================================================================
    # Checks
    # =========================================================================

    def check_temp_cache(self, ip: Optional[str]) -> Optional[DenyEntry]:
        """Return the active cached temporary entry for an IP, if any."""
        if not ip:
            return None
        entry = self._temp_cache.get(ip)
        if entry is None:
            return None
        if not entry.is_active(self.now()):
            # Expired: drop it unless the sweep already replaced the map
            if self._temp_cache.get(ip) is entry:
                del self._temp_cache[ip]
            return None
        return entry

    async def check(self, identity: ClientIdentity) -> BlockDecision:
        """
        Check whether a client identity is blocked.

        Order: in-process temporary cache by IP, then a store lookup
        matching IP, user agent hash or device fingerprint. A store
        failure is logged and the client is let through.
        """
        self._checks += 1

        cached = self.check_temp_cache(identity.ip)
        if cached is not None:
            self._blocked += 1
            return BlockDecision(
                blocked=True,
                reason=cached.reason,
                temporary=True,
                expires_at=cached.expires_at,
                entry_id=cached.id,
                source="cache",
            )

        try:
            entry = await self.store.find_deny_entry(
                identity.ip,
                identity.user_agent_hash,
                identity.device_fingerprint,
                self.now(),
            )
        except Exception as e:
            logger.error("blacklist_lookup_failed", ip=identity.ip, error=str(e))
            return BlockDecision()

        if entry is None:
            return BlockDecision()

        self._blocked += 1
        return BlockDecision(
            blocked=True,
            reason=entry.reason,
            temporary=not entry.is_permanent,
            expires_at=entry.expires_at,
            entry_id=entry.id,
            source="store",
        )

    # =========================================================================
    # Escalation
    # =========================================================================

    async def record_failure(self, ip: Optional[str], reason: str = "request failed") -> EscalationResult:
        """
        Record a failure-class outcome for an IP.

        Appends to the IP's sliding window, prunes timestamps older than
        the window, and promotes the IP to a temporary block once the
        count reaches the threshold. The count-and-promote step is atomic
        per IP. Persisting the block may fail; that is logged and the
        in-process block still applies.
        """
        if not ip:
            return EscalationResult(blocked=False, failure_count=0)

        async with self._failure_lock:
            now = self._clock()
            cutoff = now - self.failure_window
            window = [ts for ts in self._failures.get(ip, []) if ts > cutoff]
            window.append(now)
            count = len(window)

            if (
                count < self.failure_threshold
                or ip in self._escalating
                or self.check_temp_cache(ip) is not None
            ):
                self._failures[ip] = window
                logger.debug("failure_recorded", ip=ip, reason=reason, count=count)
                return EscalationResult(blocked=False, failure_count=count)

            # Superseded by the block
            self._failures.pop(ip, None)
            self._escalating.add(ip)

        try:
            entry = await self._promote(ip, count)
        finally:
            self._escalating.discard(ip)

        return EscalationResult(blocked=True, failure_count=count, entry=entry)

    async def _promote(self, ip: str, count: int) -> DenyEntry:
        entry = DenyEntry.create(
            identity=ClientIdentity(ip=ip),
            reason=f"auto: {count} failures",
            added_by=SYSTEM_OPERATOR,
            duration_seconds=self.block_duration,
            now=self.now(),
        )

        try:
            entry = entry.with_id(await self.store.upsert_deny_entry(entry))
        except Exception as e:
            logger.error("escalation_persist_failed", ip=ip, error=str(e))

        async with self._cache_lock:
            self._temp_cache[ip] = entry

        self._escalations += 1
        logger.warning(
            "client_auto_blacklisted",
            ip=ip,
            failures=count,
            expires_at=entry.expires_at.isoformat(),
        )
        return entry

    def failure_count(self, ip: str) -> int:
        cutoff = self._clock() - self.failure_window
        return sum(1 for ts in self._failures.get(ip, []) if ts > cutoff)

    # =========================================================================
    # Operator actions
    # =========================================================================

    async def add(
        self,
        identity: ClientIdentity,
        reason: str,
        added_by: str,
        duration: Optional[float] = None,
    ) -> DenyEntry:
        """
        Insert a permanent (no duration) or temporary entry.

        Upserts on identity conflict. Store errors propagate to the
        operator.
        """
        if identity.is_empty():
            raise ValueError("A deny entry needs at least one identity field")

        entry = DenyEntry.create(
            identity=identity,
            reason=reason,
            added_by=added_by,
            duration_seconds=duration,
            now=self.now(),
        )
        entry = entry.with_id(await self.store.upsert_deny_entry(entry))

        if identity.ip:
            async with self._cache_lock:
                if entry.is_permanent:
                    self._temp_cache.pop(identity.ip, None)
                else:
                    self._temp_cache[identity.ip] = entry

        logger.info(
            "blacklist_entry_added",
            entry_id=entry.id,
            ip=identity.ip,
            added_by=added_by,
            permanent=entry.is_permanent,
        )
        return entry

    async def remove(self, entry_id: int) -> bool:
        """Delete an entry by id and evict it from the in-process cache."""
        changed = await self.store.delete_deny_entry(entry_id)

        async with self._cache_lock:
            for ip, entry in list(self._temp_cache.items()):
                if entry.id == entry_id:
                    del self._temp_cache[ip]

        logger.info("blacklist_entry_removed", entry_id=entry_id, changed=changed)
        return changed

    async def list_entries(self, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        """Page through active entries, newest first, with summary stats."""
        page = max(page, 1)
        limit = max(limit, 1)
        now = self.now()

        entries, total = await self.store.list_deny_entries(page, limit, now)
        stats = await self.store.deny_entry_stats(now)

        return {
            "data": [entry.to_dict(now) for entry in entries],
            "stats": stats,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if total else 0,
            },
        }

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def sweep(self) -> Dict[str, int]:
        """
        Purge expired cache entries, stale failure windows and expired
        persisted entries. Permanent entries are never purged.
        """
        now_ts = self._clock()
        now = utc_from_timestamp(now_ts)

        async with self._cache_lock:
            before = len(self._temp_cache)
            self._temp_cache = {
                ip: entry for ip, entry in self._temp_cache.items() if entry.is_active(now)
            }
            cache_purged = before - len(self._temp_cache)

        async with self._failure_lock:
            cutoff = now_ts - self.failure_window
            pruned = {}
            for ip, window in self._failures.items():
                recent = [ts for ts in window if ts > cutoff]
                if recent:
                    pruned[ip] = recent
            windows_dropped = len(self._failures) - len(pruned)
            self._failures = pruned

        store_purged = 0
        try:
            store_purged = await self.store.delete_expired_deny_entries(now)
        except Exception as e:
            logger.error("blacklist_store_sweep_failed", error=str(e))

        result = {
            "cache_purged": cache_purged,
            "windows_dropped": windows_dropped,
            "store_purged": store_purged,
        }
        logger.info("blacklist_sweep_completed", **result)
        return result

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        return {
            "checks": self._checks,
            "blocked": self._blocked,
            "escalations": self._escalations,
            "cached_temporary_blocks": len(self._temp_cache),
            "tracked_ips": len(self._failures),
            "failure_threshold": self.failure_threshold,
            "failure_window_seconds": self.failure_window,
        }
