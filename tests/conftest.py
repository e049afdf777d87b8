"""Shared fixtures for the gateway test suite."""

from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from apirelay.infrastructure.persistence.gateway_store import InMemoryGatewayStore
from apirelay.proxy.config import GatewayConfig
from apirelay.proxy.gateway import ApiRelayGateway
from apirelay.proxy.state import GatewayState
from tests.helpers import ADMIN_KEY, FakeClock, FakeRedisClient, SleepRecorder, Upstream


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryGatewayStore()


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def fake_sleep():
    return SleepRecorder()


@pytest.fixture
def fake_redis():
    return FakeRedisClient()


@pytest.fixture
def config():
    return GatewayConfig(api_keys=[ADMIN_KEY])


@pytest.fixture
def make_gateway(store, clock, upstream, fake_sleep, config):
    """Build an ApiRelayGateway; keyword overrides replace config fields."""

    def _make(**overrides) -> ApiRelayGateway:
        state = GatewayState(
            config=replace(config, **overrides),
            store=store,
            clock=clock,
            transport=upstream.transport,
        )
        return ApiRelayGateway(state, sleep=fake_sleep)

    return _make


@pytest.fixture
def make_client(make_gateway):
    """Yield TestClients for gateway apps; lifespan runs on enter."""
    clients = []

    def _make(**overrides):
        gateway = make_gateway(**overrides)
        client = TestClient(gateway.create_app())
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()
