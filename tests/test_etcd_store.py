import socket
import threading
import time

import pytest

from beacon.discovery import NOT_FOUND, Endpoint, ServiceDiscovery
from beacon.exceptions import StoreConflictError, StoreUnavailableError
from beacon.store import EtcdStore


def _closed_port_url() -> str:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    return f"http://127.0.0.1:{port}"


@pytest.fixture
def etcd_discovery(etcd_store):
    client = ServiceDiscovery(etcd_store, namespace="/services", install_signal_handlers=False)
    yield client
    client.close()


def test_get_missing_key(etcd_store):
    assert etcd_store.get("/services/missing") is None


def test_set_then_get(etcd_store, etcd_server):
    entry = etcd_store.set("/services/svc", '{"uri": ["a:1"]}')
    assert entry.key == "/services/svc"
    assert etcd_store.get("/services/svc") == entry
    assert etcd_server.store.get("/services/svc").value == '{"uri": ["a:1"]}'


def test_conditional_writes(etcd_store):
    entry = etcd_store.set("/services/svc", "1", prev_exist=False)
    with pytest.raises(StoreConflictError):
        etcd_store.set("/services/svc", "2", prev_exist=False)
    updated = etcd_store.set("/services/svc", "2", prev_index=entry.index)
    with pytest.raises(StoreConflictError):
        etcd_store.set("/services/svc", "3", prev_index=entry.index)
    assert etcd_store.get("/services/svc") == updated


def test_conditional_write_on_vanished_key_conflicts(etcd_store):
    entry = etcd_store.set("/services/svc", "1")
    etcd_store.delete("/services/svc")
    with pytest.raises(StoreConflictError):
        etcd_store.set("/services/svc", "2", prev_index=entry.index)


def test_delete(etcd_store):
    entry = etcd_store.set("/services/svc", "1")
    etcd_store.set("/services/svc", "2")
    with pytest.raises(StoreConflictError):
        etcd_store.delete("/services/svc", prev_index=entry.index)
    etcd_store.delete("/services/svc")
    assert etcd_store.get("/services/svc") is None
    etcd_store.delete("/services/svc")


def test_make_directory_is_idempotent(etcd_store):
    etcd_store.make_directory("/services")
    etcd_store.make_directory("/services")


def test_unreachable_store_raises():
    store = EtcdStore(_closed_port_url(), timeout=1.0)
    with pytest.raises(StoreUnavailableError):
        store.get("/services/svc")
    with pytest.raises(StoreUnavailableError):
        store.set("/services/svc", "1")


def test_watch_delivers_events(etcd_store):
    received = []
    arrived = threading.Event()

    def _on_change(event):
        received.append(event)
        if len(received) == 2:
            arrived.set()

    sub = etcd_store.watch("/services/svc", _on_change)
    try:
        etcd_store.set("/services/svc", "1")
        etcd_store.delete("/services/svc")
        assert arrived.wait(5)
    finally:
        sub.cancel()

    assert [(e.action, e.value) for e in received] == [("set", "1"), ("delete", None)]
    assert received[1].is_removal


def _watch_threads(path):
    return [t for t in threading.enumerate() if t.name == f"etcd-watch:{path}" and t.is_alive()]


def test_cancel_on_idle_key_stops_watch_thread(etcd_store):
    subs = [etcd_store.watch("/services/quiet", lambda event: None) for _ in range(5)]
    assert len(_watch_threads("/services/quiet")) == 5

    for sub in subs:
        sub.cancel()

    assert _watch_threads("/services/quiet") == []


def test_watch_survives_idle_polls(etcd_store):
    arrived = threading.Event()
    sub = etcd_store.watch("/services/svc", lambda event: arrived.set())
    try:
        # Outlasts several poll timeouts with nothing to report
        time.sleep(0.7)
        etcd_store.set("/services/svc", "1")
        assert arrived.wait(5)
    finally:
        sub.cancel()


def test_discovery_over_etcd(etcd_discovery, etcd_server):
    etcd_discovery.register("svc", "10.0.0.1:9000")
    etcd_discovery.register("svc", "10.0.0.1:9000")
    assert etcd_discovery.discover("svc") == Endpoint("10.0.0.1", 9000)

    etcd_discovery.unregister("svc", "10.0.0.1:9000")
    assert etcd_server.store.get("/services/svc") is None
    assert etcd_discovery.discover("svc") is NOT_FOUND


def test_discover_degrades_when_etcd_is_down(capsys):
    discovery = ServiceDiscovery(EtcdStore(_closed_port_url(), timeout=1.0), install_signal_handlers=False)
    assert discovery.discover("svc") is NOT_FOUND
    assert "svc not found" in capsys.readouterr().err


def test_watch_over_etcd(etcd_discovery):
    changes = []
    arrived = threading.Event()

    def _on_change(change):
        changes.append(change)
        if not change.record:
            arrived.set()

    etcd_discovery.watch("svc", _on_change)
    etcd_discovery.register("svc", "a:1")
    etcd_discovery.unregister("svc", "a:1")
    assert arrived.wait(5)
    assert [list(c.record) for c in changes] == [["a:1"], []]
