"""Push notifications when the set of addresses under a name changes."""

import sys
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from ..exceptions import MalformedRecordError
from ..store import ChangeEvent, Subscription
from .records import AddressRecord
from .registry import Registry


@dataclass(frozen=True)
class ServiceChange:
    """Parsed change notification handed to watch handlers.

    *record* is the full address set after the change; removals carry an
    empty record.
    """
    name: str
    action: str
    record: AddressRecord
    index: int


ChangeHandler = Callable[[ServiceChange], None]


class Watcher:
    """Keeps one store subscription per (name, handler) pair."""

    def __init__(self, registry: Registry):
        self.registry = registry
        self._lock = threading.Lock()
        self._subscriptions: Dict[Tuple[str, ChangeHandler], Subscription] = {}

    def watch(self, name: str, handler: ChangeHandler) -> Subscription:
        key = (name, handler)
        with self._lock:
            existing = self._subscriptions.get(key)
            if existing is not None and existing.active:
                return existing

        path = self.registry.path_for(name)

        def _relay(event: ChangeEvent) -> None:
            if event.is_removal or event.value is None:
                record = AddressRecord()
            else:
                try:
                    record = AddressRecord.parse(event.value, path=path)
                except MalformedRecordError as e:
                    print(f"[watcher] dropping malformed update for {name}: {e}", file=sys.stderr)
                    return
            handler(ServiceChange(name=name, action=event.action, record=record, index=event.index))

        # Subscribing can block on the network, so it happens outside the lock
        subscription = self.registry.store.watch(path, _relay)
        with self._lock:
            existing = self._subscriptions.get(key)
            if existing is None or not existing.active:
                self._subscriptions[key] = subscription
                return subscription
        # Another thread registered the same pair first; keep theirs
        subscription.cancel()
        return existing

    def unwatch(self, name: str, handler: ChangeHandler) -> bool:
        with self._lock:
            subscription = self._subscriptions.pop((name, handler), None)
        if subscription is None:
            return False
        subscription.cancel()
        return True

    def close(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.cancel()
