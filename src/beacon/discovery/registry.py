"""Registering and unregistering service URIs in the key-value store."""

import sys
from typing import Callable, Optional

from ..exceptions import StoreConflictError
from ..store import KeyValueStore, StoreEntry
from .lifecycle import LifecycleGuard, RegistrationHandle
from .records import AddressRecord, Endpoint


class Registry:
    """Read-modify-write of the address record stored under each service name.

    Every write is conditional on the modification index that was read, so
    two processes registering under the same name at the same time cannot
    overwrite each other: the loser re-reads and merges again, up to
    *max_conflict_retries* times.
    """

    def __init__(self, store: KeyValueStore, namespace: str,
                 lifecycle: Optional[LifecycleGuard] = None,
                 max_conflict_retries: int = 5,
                 install_hooks: bool = True):
        self.store = store
        self.namespace = namespace
        self.max_conflict_retries = max_conflict_retries
        self.lifecycle = lifecycle or LifecycleGuard(
            self.unregister, install_hooks=install_hooks,
        )

    def path_for(self, name: str) -> str:
        """Ensure the namespace directory exists and return ``{namespace}/{name}``."""
        if not name:
            raise ValueError("service name must be non-empty")
        self.store.make_directory(self.namespace)
        return f"{self.namespace}/{name}"

    def lookup(self, name: str) -> AddressRecord:
        """Current record for *name*; empty when nothing is registered."""
        path = self.path_for(name)
        entry = self.store.get(path)
        if entry is None:
            return AddressRecord()
        return AddressRecord.parse(entry.value, path=path)

    def register(self, name: str, uri: str) -> RegistrationHandle:
        """Add *uri* under *name*; raises MalformedRecordError for a bad ``host:port``."""
        Endpoint.from_uri(uri)
        path = self.path_for(name)

        def _merge(current: AddressRecord) -> Optional[AddressRecord]:
            if uri in current:
                return None
            return current.add(uri)

        self._update(path, _merge)
        print(f"[registry] {name} registered {uri}", file=sys.stderr)
        return self.lifecycle.arm(name, uri)

    def unregister(self, name: str, uri: str) -> None:
        path = self.path_for(name)

        def _drop(current: AddressRecord) -> Optional[AddressRecord]:
            if uri not in current:
                return None
            return current.remove(uri)

        if self._update(path, _drop):
            print(f"[registry] {name} unregistered {uri}", file=sys.stderr)
        self.lifecycle.disarm(name, uri)

    def _update(self, path: str,
                mutate: Callable[[AddressRecord], Optional[AddressRecord]]) -> bool:
        """Apply *mutate* to the record at *path* with optimistic concurrency.

        *mutate* returns the new record, or ``None`` to leave the store
        untouched. An empty result deletes the key. Returns whether the
        store was modified.
        """
        attempts = self.max_conflict_retries + 1
        for attempt in range(1, attempts + 1):
            entry = self.store.get(path)
            current = AddressRecord.parse(entry.value, path=path) if entry else AddressRecord()
            updated = mutate(current)
            if updated is None or (entry is None and not updated):
                return False
            try:
                self._write(path, entry, updated)
                return True
            except StoreConflictError as e:
                if attempt == attempts:
                    raise
                print(
                    f"[registry] concurrent update of {path} ({e.message}); "
                    f"retrying ({attempt}/{self.max_conflict_retries})",
                    file=sys.stderr,
                )
        return False

    def _write(self, path: str, entry: Optional[StoreEntry], updated: AddressRecord) -> None:
        if entry is None:
            self.store.set(path, updated.dumps(), prev_exist=False)
        elif not updated:
            # Never persist an empty list; the key must go away
            self.store.delete(path, prev_index=entry.index)
        else:
            self.store.set(path, updated.dumps(), prev_index=entry.index)
