"""
Test helpers: a controllable clock, an in-process Redis stand-in,
a mock upstream and request header builders.
"""

from typing import Any, Callable, Dict, List, Optional

import httpx

T0 = 1_700_000_000.0
ADMIN_KEY = "relay_test_admin_key"


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedisClient:
    """
    Dict-backed stand-in for RedisClient covering the operations the
    gateway store uses. Values come back as strings, as with
    ``decode_responses=True``.
    """

    def __init__(self):
        self.strings: Dict[str, str] = {}
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.sets: Dict[str, set] = {}
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.lists: Dict[str, List[str]] = {}

    async def get(self, key):
        return self.strings.get(key)

    async def set(self, key, value, expire=None):
        self.strings[key] = str(value)
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            for space in (self.strings, self.hashes, self.sets, self.zsets, self.lists):
                if space.pop(key, None) is not None:
                    removed += 1
        return removed

    async def incr(self, key):
        value = int(self.strings.get(key, "0")) + 1
        self.strings[key] = str(value)
        return value

    async def hset(self, name, mapping):
        self.hashes.setdefault(name, {}).update({k: str(v) for k, v in mapping.items()})
        return len(mapping)

    async def hgetall(self, name):
        return dict(self.hashes.get(name, {}))

    async def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(str(v) for v in values)
        return len(self.lists[key])

    async def sadd(self, key, *values):
        members = self.sets.setdefault(key, set())
        before = len(members)
        members.update(str(v) for v in values)
        return len(members) - before

    async def srem(self, key, *values):
        members = self.sets.get(key, set())
        before = len(members)
        members.difference_update(str(v) for v in values)
        return before - len(members)

    async def smembers(self, key):
        return set(self.sets.get(key, set()))

    async def zadd(self, key, mapping):
        self.zsets.setdefault(key, {}).update({str(k): float(v) for k, v in mapping.items()})
        return len(mapping)

    async def zrem(self, key, *members):
        zset = self.zsets.get(key, {})
        return sum(1 for m in members if zset.pop(str(m), None) is not None)

    async def zrevrange(self, key, start, end):
        ordered = sorted(self.zsets.get(key, {}).items(), key=lambda kv: kv[1], reverse=True)
        members = [member for member, _ in ordered]
        return members[start:] if end == -1 else members[start:end + 1]


class Upstream:
    """Mock target server recording every request it receives."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.handler: Optional[Callable[[httpx.Request], Any]] = None

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        if self.handler is not None:
            return self.handler(request)
        return httpx.Response(
            200,
            json={"ok": True, "path": request.url.path},
            headers={"cache-control": "no-store", "x-upstream-secret": "hidden"},
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


class SleepRecorder:
    """Replacement for asyncio.sleep that records and returns immediately."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def client_headers(ip: str, **extra: str) -> Dict[str, str]:
    headers = {"X-Forwarded-For": ip}
    headers.update(extra)
    return headers


def admin_headers(ip: str = "203.0.113.200") -> Dict[str, str]:
    return client_headers(ip, **{"X-API-Key": ADMIN_KEY})
