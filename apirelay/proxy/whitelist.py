"""
Whitelist Cache

TTL-cached set of domains permitted as forwarding targets.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, FrozenSet, List, Optional
from urllib.parse import urlsplit

import structlog

from apirelay.infrastructure.persistence.gateway_store import GatewayStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WhitelistSnapshot:
    """Domains as read from the store at ``fetched_at``."""

    domains: FrozenSet[str]
    fetched_at: float

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.fetched_at < ttl


def normalize_domain(domain: str) -> str:
    return domain.strip().lower().rstrip(".")


def host_matches(host: str, domain: str) -> bool:
    """Exact match or subdomain match on a ``.`` boundary."""
    return host == domain or host.endswith("." + domain)


class WhitelistCache:
    """
    Lazily refreshed domain allow-list.

    A stale snapshot is refreshed on first access. If the refresh fails
    the previous snapshot is kept; with no previous snapshot the list is
    treated as empty, which denies every target while enforcement is on.
    """

    def __init__(
        self,
        store: GatewayStore,
        enabled: bool = False,
        ttl: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.enabled = enabled
        self.ttl = ttl
        self._clock = clock
        self._snapshot: Optional[WhitelistSnapshot] = None
        self._lock = asyncio.Lock()
        self._refresh_count = 0

    @property
    def snapshot(self) -> Optional[WhitelistSnapshot]:
        return self._snapshot

    async def is_domain_allowed(self, url: str) -> bool:
        """Check whether the URL's hostname is whitelisted."""
        if not self.enabled:
            return True

        try:
            host = (urlsplit(url).hostname or "").lower()
        except ValueError:
            return False
        if not host:
            return False

        domains = await self.get_domains()
        if not domains:
            return False

        return any(host_matches(host, domain) for domain in domains)

    async def get_domains(self) -> FrozenSet[str]:
        snapshot = self._snapshot
        if snapshot is not None and snapshot.is_fresh(self._clock(), self.ttl):
            return snapshot.domains
        snapshot = await self.refresh()
        return snapshot.domains

    async def refresh(self, force: bool = False) -> WhitelistSnapshot:
        """
        Reload the snapshot from the store if it is stale.

        Concurrent callers wait on the same lock, so a burst of stale
        lookups results in a single store read.
        """
        async with self._lock:
            now = self._clock()
            if (
                not force
                and self._snapshot is not None
                and self._snapshot.is_fresh(now, self.ttl)
            ):
                return self._snapshot

            try:
                domains = await self.store.list_whitelist_domains()
            except Exception as e:
                logger.error("whitelist_refresh_failed", error=str(e))
                if self._snapshot is None:
                    # Nothing cached yet: enforce an empty list, retry next lookup
                    return WhitelistSnapshot(frozenset(), now)
                return self._snapshot

            self._snapshot = WhitelistSnapshot(
                frozenset(normalize_domain(d) for d in domains if d.strip()),
                now,
            )
            self._refresh_count += 1
            logger.debug("whitelist_refreshed", domains=len(self._snapshot.domains))
            return self._snapshot

    def invalidate(self) -> None:
        """Force the next lookup to reload from the store."""
        self._snapshot = None

    async def list_domains(self) -> List[str]:
        return sorted(await self.store.list_whitelist_domains())

    async def add_domain(self, domain: str, added_by: str) -> bool:
        normalized = normalize_domain(domain)
        if not normalized or "/" in normalized:
            raise ValueError(f"Invalid domain: {domain!r}")
        added = await self.store.add_whitelist_domain(normalized, added_by)
        self.invalidate()
        logger.info("whitelist_domain_added", domain=domain, added_by=added_by, new=added)
        return added

    async def remove_domain(self, domain: str) -> bool:
        removed = await self.store.remove_whitelist_domain(normalize_domain(domain))
        self.invalidate()
        logger.info("whitelist_domain_removed", domain=domain, removed=removed)
        return removed

    def get_stats(self) -> dict:
        return {
            "enabled": self.enabled,
            "ttl_seconds": self.ttl,
            "cached_domains": len(self._snapshot.domains) if self._snapshot else 0,
            "refresh_count": self._refresh_count,
        }
