"""
Tests for the Blacklist Engine

Covers:
1. Escalation fires exactly at the failure threshold
2. Failures outside the sliding window do not count
3. Temporary blocks expire; permanent ones do not
4. Permanent entries survive an engine restart on the same store
5. Store outages fail open on check and are swallowed on escalation
6. Sweep purges expired state
"""

import asyncio

import pytest

from apirelay.domain.entities.deny_entry import DenyEntry
from apirelay.domain.value_objects.client_identity import ClientIdentity
from apirelay.infrastructure.persistence.gateway_store import InMemoryGatewayStore
from apirelay.proxy.blacklist import BlacklistEngine
from tests.helpers import FakeClock

IP = "198.51.100.7"


class BrokenStore(InMemoryGatewayStore):
    """Store whose deny-list operations all fail."""

    async def find_deny_entry(self, *args, **kwargs):
        raise ConnectionError("store unavailable")

    async def upsert_deny_entry(self, entry):
        raise ConnectionError("store unavailable")

    async def delete_expired_deny_entries(self, now):
        raise ConnectionError("store unavailable")


@pytest.fixture
def engine(store, clock):
    return BlacklistEngine(
        store=store,
        block_duration=3600,
        failure_threshold=10,
        failure_window=300,
        clock=clock,
    )


class TestEscalation:
    @pytest.mark.asyncio
    async def test_threshold_minus_one_failures_never_block(self, engine):
        for _ in range(9):
            result = await engine.record_failure(IP, "upstream status 500")
            assert result.blocked is False

        decision = await engine.check(ClientIdentity(ip=IP))
        assert decision.blocked is False
        assert engine.failure_count(IP) == 9

    @pytest.mark.asyncio
    async def test_threshold_failure_blocks_with_count_in_reason(self, engine, store):
        for _ in range(9):
            await engine.record_failure(IP)

        result = await engine.record_failure(IP)

        assert result.blocked is True
        assert result.failure_count == 10
        assert result.entry.reason == "auto: 10 failures"
        assert result.entry.added_by == "system"

        decision = await engine.check(ClientIdentity(ip=IP))
        assert decision.blocked is True
        assert decision.temporary is True
        assert decision.source == "cache"

        persisted, total = await store.list_deny_entries(1, 10, engine.now())
        assert total == 1
        assert persisted[0].identity.ip == IP

    @pytest.mark.asyncio
    async def test_block_expires_after_duration(self, engine, clock):
        for _ in range(10):
            await engine.record_failure(IP)
        assert (await engine.check(ClientIdentity(ip=IP))).blocked

        clock.advance(3601)

        assert (await engine.check(ClientIdentity(ip=IP))).blocked is False

    @pytest.mark.asyncio
    async def test_failures_outside_window_are_pruned(self, engine, clock):
        for _ in range(9):
            await engine.record_failure(IP)

        clock.advance(301)
        result = await engine.record_failure(IP)

        assert result.blocked is False
        assert result.failure_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_failures_escalate_once(self, engine, store):
        results = await asyncio.gather(*(engine.record_failure(IP) for _ in range(25)))

        assert sum(1 for r in results if r.blocked) == 1
        _, total = await store.list_deny_entries(1, 50, engine.now())
        assert total == 1

    @pytest.mark.asyncio
    async def test_missing_ip_is_ignored(self, engine):
        result = await engine.record_failure(None)
        assert result.blocked is False
        assert result.failure_count == 0

    @pytest.mark.asyncio
    async def test_escalation_survives_store_write_failure(self, clock):
        engine = BlacklistEngine(BrokenStore(), failure_threshold=3, clock=clock)

        for _ in range(3):
            result = await engine.record_failure(IP)

        assert result.blocked is True
        assert engine.check_temp_cache(IP) is not None


class TestChecks:
    @pytest.mark.asyncio
    async def test_store_failure_fails_open(self, clock):
        engine = BlacklistEngine(BrokenStore(), clock=clock)

        decision = await engine.check(ClientIdentity(ip=IP))

        assert decision.blocked is False

    @pytest.mark.asyncio
    async def test_matches_on_device_fingerprint_alone(self, engine):
        await engine.add(
            ClientIdentity(device_fingerprint="f" * 32),
            reason="scraper farm",
            added_by="operator",
        )

        rotated_ip = ClientIdentity(ip="192.0.2.99", user_agent_hash="x", device_fingerprint="f" * 32)
        decision = await engine.check(rotated_ip)

        assert decision.blocked is True
        assert decision.temporary is False
        assert decision.reason == "scraper farm"

    @pytest.mark.asyncio
    async def test_permanent_entry_survives_restart(self, store, clock):
        first = BlacklistEngine(store, clock=clock)
        await first.add(ClientIdentity(ip=IP), reason="abuse", added_by="operator")

        clock.advance(10 * 365 * 24 * 3600)
        restarted = BlacklistEngine(store, clock=clock)
        decision = await restarted.check(ClientIdentity(ip=IP))

        assert decision.blocked is True
        assert decision.temporary is False
        assert decision.expires_at is None

    @pytest.mark.asyncio
    async def test_temporary_store_entry_seen_after_restart(self, store, clock):
        first = BlacklistEngine(store, clock=clock)
        await first.add(ClientIdentity(ip=IP), reason="cool off", added_by="operator", duration=600)

        restarted = BlacklistEngine(store, clock=clock)
        decision = await restarted.check(ClientIdentity(ip=IP))

        assert decision.blocked is True
        assert decision.temporary is True
        assert decision.source == "store"


class TestOperatorActions:
    @pytest.mark.asyncio
    async def test_add_rejects_empty_identity(self, engine):
        with pytest.raises(ValueError):
            await engine.add(ClientIdentity(), reason="nothing", added_by="operator")

    @pytest.mark.asyncio
    async def test_re_adding_same_identity_upserts(self, engine, store):
        first = await engine.add(ClientIdentity(ip=IP), reason="one", added_by="operator")
        second = await engine.add(ClientIdentity(ip=IP), reason="two", added_by="operator")

        assert first.id == second.id
        entries, total = await store.list_deny_entries(1, 10, engine.now())
        assert total == 1
        assert entries[0].reason == "two"

    @pytest.mark.asyncio
    async def test_permanent_add_replaces_cached_escalation(self, engine):
        for _ in range(10):
            await engine.record_failure(IP)

        await engine.add(ClientIdentity(ip=IP), reason="confirmed abuse", added_by="operator")

        assert engine.check_temp_cache(IP) is None
        decision = await engine.check(ClientIdentity(ip=IP))
        assert decision.temporary is False
        assert decision.reason == "confirmed abuse"

    @pytest.mark.asyncio
    async def test_remove_evicts_cache(self, engine):
        for _ in range(10):
            result = await engine.record_failure(IP)

        assert await engine.remove(result.entry.id) is True
        assert (await engine.check(ClientIdentity(ip=IP))).blocked is False
        assert await engine.remove(result.entry.id) is False

    @pytest.mark.asyncio
    async def test_list_entries_paginates_with_stats(self, engine, clock):
        for i in range(3):
            await engine.add(ClientIdentity(ip=f"192.0.2.{i}"), reason="manual", added_by="operator")
            clock.advance(1)
        for _ in range(10):
            await engine.record_failure(IP)

        listing = await engine.list_entries(page=1, limit=2)

        assert listing["pagination"] == {"page": 1, "limit": 2, "total": 4, "total_pages": 2}
        assert listing["stats"] == {"total": 4, "auto": 1, "manual": 3}
        assert listing["data"][0]["ip_address"] == IP
        assert listing["data"][0]["status"] == "temporary"


class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_purges_expired_state(self, engine, store, clock):
        await engine.add(ClientIdentity(ip="192.0.2.50"), reason="keep", added_by="operator")
        for _ in range(10):
            await engine.record_failure(IP)
        await engine.record_failure("192.0.2.60")

        clock.advance(3601)
        result = await engine.sweep()

        assert result == {"cache_purged": 1, "windows_dropped": 1, "store_purged": 1}
        entries, total = await store.list_deny_entries(1, 10, engine.now(), include_expired=True)
        assert total == 1
        assert entries[0].is_permanent

    @pytest.mark.asyncio
    async def test_sweep_tolerates_store_failure(self, clock):
        engine = BlacklistEngine(BrokenStore(), clock=clock)
        result = await engine.sweep()
        assert result["store_purged"] == 0


def test_deny_entry_round_trips_through_dict():
    entry = DenyEntry.create(
        ClientIdentity(ip=IP, user_agent_hash="abc"),
        reason="r",
        added_by="operator",
        duration_seconds=60,
    ).with_id(5)

    restored = DenyEntry.from_dict(
        {k: ("" if v is None else v) for k, v in entry.to_dict().items()}
    )

    assert restored == entry
