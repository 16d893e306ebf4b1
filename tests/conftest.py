"""Shared fixtures: in-memory store, discovery client, fake etcd server."""

import pytest

from beacon.discovery import ServiceDiscovery
from beacon.store import EtcdStore, InMemoryStore

from fake_etcd import FakeEtcdServer


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def discovery(store):
    """Discovery client over the in-memory store, without process-wide hooks."""
    client = ServiceDiscovery(store, namespace="/services", install_signal_handlers=False)
    yield client
    client.close()


@pytest.fixture
def etcd_server():
    server = FakeEtcdServer().start()
    yield server
    server.stop()


@pytest.fixture
def etcd_store(etcd_server):
    return EtcdStore(etcd_server.url, timeout=5.0, watch_retry_interval=0.1,
                     watch_poll_timeout=0.2)
