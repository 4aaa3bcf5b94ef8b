"""
Shared test fixtures for the prometheus-sd test suite.
"""

import tempfile

import fakeredis
import pytest

from prometheus_sd.registry import RegistryKeys, RegistryStore


@pytest.fixture
def tmp_dir():
    with tempfile.TemporaryDirectory() as d:
        yield d


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(redis_server):
    """Create a fake Redis client."""
    return fakeredis.FakeRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def other_client(redis_server):
    """A second client on the same fake server, standing in for another host."""
    return fakeredis.FakeRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def keys():
    return RegistryKeys()


@pytest.fixture
def store(redis_client, keys):
    return RegistryStore(redis_client, keys)


@pytest.fixture
def other_store(other_client, keys):
    return RegistryStore(other_client, keys)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("PROMETHEUS_SD_REDIS_URL", "PROMETHEUS_SD_REDIS_TIMEOUT", "PROMETHEUS_SD_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
