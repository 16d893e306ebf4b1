"""Thread-safe, dict-backed KeyValueStore with etcd-style modification indexes."""

import sys
import threading
from typing import Callable, Dict, List, Optional

from ..exceptions import StoreConflictError, StoreUnavailableError
from .base import ChangeEvent, KeyValueStore, StoreEntry, Subscription


# etcd error codes, reused so both stores fail the same way
KEY_NOT_FOUND = 100
TEST_FAILED = 101
NOT_A_FILE = 102
NODE_EXIST = 105


class InMemoryStore(KeyValueStore):
    """Single-process store for tests and local development.

    Notifications are delivered synchronously on the thread that made the
    change, after the store lock has been released.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._index = 0
        self._keys: Dict[str, StoreEntry] = {}
        self._dirs: set[str] = set()
        self._watchers: Dict[str, List[Callable[[ChangeEvent], None]]] = {}

    @property
    def index(self) -> int:
        """Index of the most recent modification (0 for a fresh store)."""
        with self._lock:
            return self._index

    def get(self, path: str) -> Optional[StoreEntry]:
        with self._lock:
            return self._keys.get(path)

    def set(self, path: str, value: str, prev_index: Optional[int] = None,
            prev_exist: Optional[bool] = None) -> StoreEntry:
        with self._lock:
            if path in self._dirs:
                raise StoreUnavailableError("Not a file", path=path, error_code=NOT_A_FILE)
            current = self._keys.get(path)
            if prev_exist is False and current is not None:
                raise StoreConflictError("Key already exists", path=path, error_code=NODE_EXIST)
            if prev_exist is True and current is None:
                raise StoreConflictError("Key not found", path=path, error_code=KEY_NOT_FOUND)
            if prev_index is not None:
                if current is None:
                    raise StoreConflictError("Key not found", path=path, error_code=KEY_NOT_FOUND)
                if current.index != prev_index:
                    raise StoreConflictError(
                        f"Compare failed ([{prev_index} != {current.index}])",
                        path=path, error_code=TEST_FAILED,
                    )

            if prev_index is not None:
                action = "compareAndSwap"
            elif prev_exist is False:
                action = "create"
            elif prev_exist is True:
                action = "update"
            else:
                action = "set"

            self._index += 1
            entry = StoreEntry(path, value, self._index)
            self._keys[path] = entry
            event = ChangeEvent(action, path, value, self._index)
        self._notify(event)
        return entry

    def delete(self, path: str, prev_index: Optional[int] = None) -> None:
        with self._lock:
            current = self._keys.get(path)
            if current is None:
                return
            if prev_index is not None and current.index != prev_index:
                raise StoreConflictError(
                    f"Compare failed ([{prev_index} != {current.index}])",
                    path=path, error_code=TEST_FAILED,
                )
            self._index += 1
            del self._keys[path]
            action = "compareAndDelete" if prev_index is not None else "delete"
            event = ChangeEvent(action, path, None, self._index)
        self._notify(event)

    def make_directory(self, path: str) -> None:
        with self._lock:
            if path in self._keys:
                raise StoreUnavailableError("Not a directory", path=path, error_code=NOT_A_FILE)
            self._dirs.add(path)

    def watch(self, path: str, on_change: Callable[[ChangeEvent], None]) -> Subscription:
        with self._lock:
            self._watchers.setdefault(path, []).append(on_change)

        def _remove() -> None:
            with self._lock:
                callbacks = self._watchers.get(path, [])
                if on_change in callbacks:
                    callbacks.remove(on_change)
                if not callbacks:
                    self._watchers.pop(path, None)

        return Subscription(path, _remove)

    def _notify(self, event: ChangeEvent) -> None:
        with self._lock:
            callbacks = list(self._watchers.get(event.key, []))
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                print(
                    f"[memory-store] watch callback for {event.key} failed: {e!r}",
                    file=sys.stderr,
                )
