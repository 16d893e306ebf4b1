import threading

import pytest

from beacon.exceptions import StoreConflictError, StoreUnavailableError
from beacon.store import InMemoryStore

from fake_etcd import HistoryStore


def test_get_set_delete(store):
    assert store.get("/ns/a") is None
    entry = store.set("/ns/a", "v1")
    assert entry.value == "v1"
    assert store.get("/ns/a") == entry
    store.delete("/ns/a")
    assert store.get("/ns/a") is None


def test_delete_absent_key_is_noop(store):
    store.delete("/ns/missing")
    store.delete("/ns/missing", prev_index=42)
    assert store.index == 0


def test_index_increases_with_every_change(store):
    first = store.set("/ns/a", "1")
    second = store.set("/ns/a", "2")
    assert second.index > first.index
    store.delete("/ns/a")
    assert store.index > second.index


def test_prev_exist_false_conflicts_on_existing_key(store):
    store.set("/ns/a", "1", prev_exist=False)
    with pytest.raises(StoreConflictError) as exc_info:
        store.set("/ns/a", "2", prev_exist=False)
    assert exc_info.value.error_code == 105
    assert store.get("/ns/a").value == "1"


def test_prev_index_compare_and_swap(store):
    entry = store.set("/ns/a", "1")
    store.set("/ns/a", "2", prev_index=entry.index)
    with pytest.raises(StoreConflictError) as exc_info:
        store.set("/ns/a", "3", prev_index=entry.index)
    assert exc_info.value.error_code == 101
    assert store.get("/ns/a").value == "2"


def test_prev_index_on_missing_key_conflicts(store):
    with pytest.raises(StoreConflictError):
        store.set("/ns/a", "1", prev_index=1)


def test_compare_and_delete(store):
    entry = store.set("/ns/a", "1")
    store.set("/ns/a", "2")
    with pytest.raises(StoreConflictError):
        store.delete("/ns/a", prev_index=entry.index)
    store.delete("/ns/a", prev_index=store.get("/ns/a").index)
    assert store.get("/ns/a") is None


def test_make_directory_is_idempotent(store):
    store.make_directory("/ns")
    store.make_directory("/ns")
    with pytest.raises(StoreUnavailableError):
        store.set("/ns", "value")


def test_watch_delivers_changes_until_cancelled(store):
    events = []
    sub = store.watch("/ns/a", events.append)
    store.set("/ns/a", "1")
    store.set("/ns/other", "x")
    store.delete("/ns/a")
    assert [(e.action, e.value) for e in events] == [("set", "1"), ("delete", None)]
    assert events[1].is_removal

    sub.cancel()
    assert not sub.active
    store.set("/ns/a", "2")
    assert len(events) == 2


def test_failing_watch_callback_does_not_break_writer(store, capsys):
    def _boom(event):
        raise RuntimeError("handler bug")

    store.watch("/ns/a", _boom)
    store.set("/ns/a", "1")
    assert store.get("/ns/a").value == "1"
    assert "handler bug" in capsys.readouterr().err


def test_history_store_returns_recorded_event():
    store = HistoryStore()
    entry = store.set("/ns/a", "1")
    event = store.wait_for("/ns/a", entry.index, timeout=0)
    assert event.value == "1"
    assert store.wait_for("/ns/a", entry.index + 1, timeout=0.05) is None


def test_history_store_wakes_on_later_change():
    store = HistoryStore()
    result = {}

    def _wait():
        result["event"] = store.wait_for("/ns/a", 1, timeout=5)

    waiter = threading.Thread(target=_wait)
    waiter.start()
    store.set("/ns/a", "1")
    waiter.join(timeout=5)
    assert result["event"].value == "1"
