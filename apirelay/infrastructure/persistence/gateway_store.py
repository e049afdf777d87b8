"""
Gateway Store
Persistent store contract used by the gateway core, with a Redis backend
and an in-process backend.

Redis layout (``{p}`` is the configured key prefix):

    {p}:whitelist                 SET of allowed domains
    {p}:deny:seq                  id sequence
    {p}:deny:entry:{id}           HASH of the entry fields
    {p}:deny:index                ZSET id -> created_at timestamp
    {p}:deny:identity:{triple}    id of the entry owning an identity triple
    {p}:deny:ip:{ip}              SET of entry ids for an IP
    {p}:deny:ua:{hash}            SET of entry ids for a user agent hash
    {p}:deny:fp:{fingerprint}     SET of entry ids for a device fingerprint
    {p}:submissions:{kind}        LIST of JSON form submissions
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog

from apirelay.domain.entities.deny_entry import DenyEntry
from apirelay.domain.value_objects.client_identity import ClientIdentity
from apirelay.infrastructure.persistence.redis_client import RedisClient

logger = structlog.get_logger(__name__)


class GatewayStore(ABC):
    """Persistent store collaborator for whitelist domains and deny entries."""

    # Whitelist -----------------------------------------------------------

    @abstractmethod
    async def list_whitelist_domains(self) -> List[str]:
        """Return every whitelisted domain."""

    @abstractmethod
    async def add_whitelist_domain(self, domain: str, added_by: str) -> bool:
        """Add a domain. Returns False if it was already present."""

    @abstractmethod
    async def remove_whitelist_domain(self, domain: str) -> bool:
        """Remove a domain. Returns False if it was not present."""

    # Deny-list -----------------------------------------------------------

    @abstractmethod
    async def find_deny_entry(
        self,
        ip: Optional[str],
        user_agent_hash: Optional[str],
        device_fingerprint: Optional[str],
        now: datetime,
    ) -> Optional[DenyEntry]:
        """Find an active entry matching any of the identity fields."""

    @abstractmethod
    async def upsert_deny_entry(self, entry: DenyEntry) -> int:
        """Insert or replace the entry for its identity triple; return its id."""

    @abstractmethod
    async def delete_deny_entry(self, entry_id: int) -> bool:
        """Delete an entry by id. Returns True if something was deleted."""

    @abstractmethod
    async def delete_expired_deny_entries(self, now: datetime) -> int:
        """Delete entries whose expiry has passed; return how many."""

    @abstractmethod
    async def list_deny_entries(
        self,
        page: int,
        limit: int,
        now: datetime,
        include_expired: bool = False,
    ) -> Tuple[List[DenyEntry], int]:
        """Return one page of entries (newest first) and the total count."""

    @abstractmethod
    async def deny_entry_stats(self, now: datetime) -> Dict[str, int]:
        """Return counts of active entries: total, auto and manual."""

    # Form submissions ----------------------------------------------------

    @abstractmethod
    async def save_submission(self, kind: str, payload: Dict[str, Any]) -> int:
        """Persist a feedback/report submission; return its id."""


def _matches(entry: DenyEntry, ip, ua_hash, fingerprint) -> bool:
    identity = entry.identity
    return bool(
        (ip and identity.ip == ip)
        or (ua_hash and identity.user_agent_hash == ua_hash)
        or (fingerprint and identity.device_fingerprint == fingerprint)
    )


def _stats(entries: List[DenyEntry], now: datetime) -> Dict[str, int]:
    active = [e for e in entries if e.is_active(now)]
    auto = sum(1 for e in active if e.is_automatic)
    return {"total": len(active), "auto": auto, "manual": len(active) - auto}


def _newest_first(entries: List[DenyEntry]) -> List[DenyEntry]:
    return sorted(entries, key=lambda e: (e.created_at, e.id or 0), reverse=True)


class InMemoryGatewayStore(GatewayStore):
    """
    Process-local store.

    Used for single-process deployments (``STORE_BACKEND=memory``) and
    tests. Nothing survives a restart unless the same instance is reused.
    """

    def __init__(self, domains: Optional[List[str]] = None):
        self._domains: Dict[str, str] = {d.lower(): "system" for d in domains or []}
        self._entries: Dict[int, DenyEntry] = {}
        self._identity_index: Dict[str, int] = {}
        self._submissions: Dict[str, List[Dict[str, Any]]] = {}
        self._next_id = 1

    async def list_whitelist_domains(self) -> List[str]:
        return sorted(self._domains)

    async def add_whitelist_domain(self, domain: str, added_by: str) -> bool:
        if domain in self._domains:
            return False
        self._domains[domain] = added_by
        return True

    async def remove_whitelist_domain(self, domain: str) -> bool:
        return self._domains.pop(domain, None) is not None

    async def find_deny_entry(self, ip, user_agent_hash, device_fingerprint, now):
        candidates = [
            e for e in self._entries.values()
            if e.is_active(now) and _matches(e, ip, user_agent_hash, device_fingerprint)
        ]
        if not candidates:
            return None
        return _newest_first(candidates)[0]

    async def upsert_deny_entry(self, entry: DenyEntry) -> int:
        key = entry.identity.key
        entry_id = self._identity_index.get(key)
        if entry_id is None:
            entry_id = self._next_id
            self._next_id += 1
        self._entries[entry_id] = entry.with_id(entry_id)
        self._identity_index[key] = entry_id
        return entry_id

    async def delete_deny_entry(self, entry_id: int) -> bool:
        entry = self._entries.pop(entry_id, None)
        if entry is None:
            return False
        if self._identity_index.get(entry.identity.key) == entry_id:
            del self._identity_index[entry.identity.key]
        return True

    async def delete_expired_deny_entries(self, now: datetime) -> int:
        expired = [i for i, e in self._entries.items() if not e.is_active(now)]
        for entry_id in expired:
            await self.delete_deny_entry(entry_id)
        return len(expired)

    async def list_deny_entries(self, page, limit, now, include_expired=False):
        entries = [
            e for e in self._entries.values() if include_expired or e.is_active(now)
        ]
        entries = _newest_first(entries)
        offset = (page - 1) * limit
        return entries[offset:offset + limit], len(entries)

    async def deny_entry_stats(self, now: datetime) -> Dict[str, int]:
        return _stats(list(self._entries.values()), now)

    async def save_submission(self, kind: str, payload: Dict[str, Any]) -> int:
        bucket = self._submissions.setdefault(kind, [])
        bucket.append(dict(payload))
        return len(bucket)

    def submissions(self, kind: str) -> List[Dict[str, Any]]:
        return list(self._submissions.get(kind, []))


class RedisGatewayStore(GatewayStore):
    """Store backed by Redis; entries outlive the gateway process."""

    def __init__(self, client: RedisClient, prefix: str = "apirelay"):
        self.client = client
        self.prefix = prefix

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix,) + parts)

    def _index_keys(self, entry: DenyEntry) -> List[str]:
        identity = entry.identity
        keys = []
        if identity.ip:
            keys.append(self._key("deny", "ip", identity.ip))
        if identity.user_agent_hash:
            keys.append(self._key("deny", "ua", identity.user_agent_hash))
        if identity.device_fingerprint:
            keys.append(self._key("deny", "fp", identity.device_fingerprint))
        return keys

    async def _load(self, entry_id) -> Optional[DenyEntry]:
        data = await self.client.hgetall(self._key("deny", "entry", str(entry_id)))
        if not data:
            return None
        return DenyEntry.from_dict(data)

    async def _load_many(self, ids) -> List[DenyEntry]:
        entries = []
        for entry_id in ids:
            entry = await self._load(entry_id)
            if entry is not None:
                entries.append(entry)
        return entries

    async def list_whitelist_domains(self) -> List[str]:
        return sorted(await self.client.smembers(self._key("whitelist")))

    async def add_whitelist_domain(self, domain: str, added_by: str) -> bool:
        added = await self.client.sadd(self._key("whitelist"), domain)
        if added:
            logger.info("whitelist_domain_stored", domain=domain, added_by=added_by)
        return added > 0

    async def remove_whitelist_domain(self, domain: str) -> bool:
        return await self.client.srem(self._key("whitelist"), domain) > 0

    async def find_deny_entry(self, ip, user_agent_hash, device_fingerprint, now):
        lookup = DenyEntry(
            identity=ClientIdentity(
                ip=ip,
                user_agent_hash=user_agent_hash,
                device_fingerprint=device_fingerprint,
            ),
            reason="",
        )
        ids = set()
        for key in self._index_keys(lookup):
            ids.update(await self.client.smembers(key))

        candidates = [e for e in await self._load_many(ids) if e.is_active(now)]
        if not candidates:
            return None
        return _newest_first(candidates)[0]

    async def upsert_deny_entry(self, entry: DenyEntry) -> int:
        identity_key = self._key("deny", "identity", entry.identity.key)
        existing = await self.client.get(identity_key)
        if existing is not None:
            entry_id = int(existing)
        else:
            entry_id = await self.client.incr(self._key("deny", "seq"))

        stored = entry.with_id(entry_id)
        mapping = {k: ("" if v is None else v) for k, v in stored.to_dict().items()}
        await self.client.hset(self._key("deny", "entry", str(entry_id)), mapping)
        for key in self._index_keys(stored):
            await self.client.sadd(key, entry_id)
        await self.client.zadd(
            self._key("deny", "index"), {str(entry_id): stored.created_at.timestamp()}
        )
        await self.client.set(identity_key, entry_id)
        return entry_id

    async def delete_deny_entry(self, entry_id: int) -> bool:
        entry = await self._load(entry_id)
        if entry is None:
            return False

        await self.client.delete(self._key("deny", "entry", str(entry_id)))
        for key in self._index_keys(entry):
            await self.client.srem(key, entry_id)
        await self.client.zrem(self._key("deny", "index"), str(entry_id))

        identity_key = self._key("deny", "identity", entry.identity.key)
        owner = await self.client.get(identity_key)
        if owner is not None and int(owner) == entry_id:
            await self.client.delete(identity_key)
        return True

    async def _all_entries(self) -> List[DenyEntry]:
        ids = await self.client.zrevrange(self._key("deny", "index"), 0, -1)
        return await self._load_many(ids)

    async def delete_expired_deny_entries(self, now: datetime) -> int:
        removed = 0
        for entry in await self._all_entries():
            if not entry.is_active(now) and await self.delete_deny_entry(entry.id):
                removed += 1
        return removed

    async def list_deny_entries(self, page, limit, now, include_expired=False):
        entries = [
            e for e in await self._all_entries() if include_expired or e.is_active(now)
        ]
        entries = _newest_first(entries)
        offset = (page - 1) * limit
        return entries[offset:offset + limit], len(entries)

    async def deny_entry_stats(self, now: datetime) -> Dict[str, int]:
        return _stats(await self._all_entries(), now)

    async def save_submission(self, kind: str, payload: Dict[str, Any]) -> int:
        submission_id = await self.client.incr(self._key("submissions", kind, "seq"))
        record = dict(payload, id=submission_id)
        await self.client.rpush(self._key("submissions", kind), json.dumps(record))
        return submission_id
