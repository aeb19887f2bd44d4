import sys
import pytest
from pathlib import Path

# Add project root (2 levels up from tests/) to sys.path so tests can import 'peercall'
root = Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))


import fakeredis
import fakeredis.aioredis

from peercall.services.signaling import RedisSignalingChannel
from tests.helpers import (
    FakeMediaSource,
    FakeTransportFactory,
    InMemorySignalingChannel,
    candidate,
)


@pytest.fixture
def channel():
    """Shared in-memory call record store both peers talk through."""
    return InMemorySignalingChannel()


@pytest.fixture
def redis_client():
    """Async fakeredis client emulating a real Redis server."""
    server = fakeredis.FakeServer()
    return fakeredis.aioredis.FakeRedis(server=server, decode_responses=True)


@pytest.fixture
def redis_channel(redis_client):
    return RedisSignalingChannel(client=redis_client)


@pytest.fixture
def alice_media():
    return FakeMediaSource()


@pytest.fixture
def bob_media():
    return FakeMediaSource()


@pytest.fixture
def alice_transports():
    return FakeTransportFactory(local_candidates=[candidate("a1", 50001), candidate("a2", 50002)])


@pytest.fixture
def bob_transports():
    return FakeTransportFactory(local_candidates=[candidate("b1", 60001)])
