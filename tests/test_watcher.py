import threading

from beacon.discovery import AddressRecord, ServiceChange, ServiceDiscovery
from beacon.store import InMemoryStore


class SlowWatchStore(InMemoryStore):
    """Holds every watch() call until *parties* callers are inside it."""

    def __init__(self, parties: int):
        super().__init__()
        self.barrier = threading.Barrier(parties, timeout=5)

    def watch(self, path, on_change):
        self.barrier.wait()
        return super().watch(path, on_change)


def test_watch_relays_parsed_records(discovery):
    changes = []
    discovery.watch("svc", changes.append)

    discovery.register("svc", "a:1")
    discovery.register("svc", "b:2")
    discovery.unregister("svc", "a:1")
    discovery.unregister("svc", "b:2")

    assert all(isinstance(c, ServiceChange) for c in changes)
    assert [list(c.record) for c in changes] == [["a:1"], ["a:1", "b:2"], ["b:2"], []]
    assert changes[0].name == "svc"
    assert changes[-1].action == "compareAndDelete"
    assert changes[-1].record == AddressRecord()


def test_watch_only_sees_its_own_name(discovery):
    changes = []
    discovery.watch("svc", changes.append)
    discovery.register("other", "a:1")
    assert changes == []


def test_unwatch_stops_delivery(discovery):
    changes = []
    discovery.watch("svc", changes.append)
    discovery.register("svc", "a:1")
    assert discovery.unwatch("svc", changes.append)
    discovery.register("svc", "b:2")
    assert len(changes) == 1
    assert not discovery.unwatch("svc", changes.append)


def test_repeated_watch_reuses_subscription(discovery):
    changes = []
    first = discovery.watch("svc", changes.append)
    second = discovery.watch("svc", changes.append)
    assert first is second
    discovery.register("svc", "a:1")
    assert len(changes) == 1


def test_malformed_update_is_dropped(discovery, store, capsys):
    changes = []
    discovery.watch("svc", changes.append)
    store.set("/services/svc", "garbage")
    assert changes == []
    assert "malformed update for svc" in capsys.readouterr().err


def test_close_cancels_all_watches(discovery):
    changes = []
    sub = discovery.watch("svc", changes.append)
    discovery.watcher.close()
    assert not sub.active
    discovery.register("svc", "a:1")
    assert changes == []


def test_concurrent_watch_of_same_pair_keeps_one_subscription():
    store = SlowWatchStore(parties=2)
    discovery = ServiceDiscovery(store, namespace="/services", install_signal_handlers=False)
    changes = []
    subs = []

    def _watch():
        subs.append(discovery.watch("svc", changes.append))

    threads = [threading.Thread(target=_watch) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)

    assert subs[0] is subs[1]
    assert discovery.unwatch("svc", changes.append)
    discovery.register("svc", "a:1")
    assert changes == []
    discovery.close()
